"""PKCE (RFC 7636) code challenge verification."""

import base64
import hashlib
import hmac

SUPPORTED_METHODS = ("S256", "plain")


def s256_challenge(code_verifier: str) -> str:
    """SHA-256 of the verifier, base64url-encoded without padding."""
    digest = hashlib.sha256(code_verifier.encode()).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode()


def verify_pkce(code_verifier: str, code_challenge: str, method: str) -> bool:
    """Check a code_verifier against the challenge recorded at authorize time.

    Unknown methods verify as False rather than raising.
    """
    if code_verifier is None or code_challenge is None:
        return False
    if method == "plain":
        expected = code_verifier
    elif method == "S256":
        expected = s256_challenge(code_verifier)
    else:
        return False
    return hmac.compare_digest(expected.encode(), code_challenge.encode())
