"""Tests for PKCE verification (oauth/pkce.py)."""

import pytest

from oauth.pkce import s256_challenge, verify_pkce


def test_rfc7636_appendix_b_vector():
    verifier = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"
    assert s256_challenge(verifier) == "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"


@pytest.mark.parametrize("verifier", ["a", "x" * 128, "ünïcødé-verifier", ""])
def test_s256_accepts_its_own_challenge(verifier):
    assert verify_pkce(verifier, s256_challenge(verifier), "S256") is True


def test_s256_challenge_has_no_padding():
    assert "=" not in s256_challenge("padding-check")


def test_s256_rejects_other_challenge():
    assert verify_pkce("verifier-one", s256_challenge("verifier-two"), "S256") is False


def test_plain_is_exact_equality():
    assert verify_pkce("same", "same", "plain") is True
    assert verify_pkce("same", "Same", "plain") is False


def test_unknown_method_is_false_not_error():
    assert verify_pkce("v", "v", "S512") is False
    assert verify_pkce("v", "v", "") is False


def test_missing_values_are_false():
    assert verify_pkce(None, "challenge", "S256") is False
    assert verify_pkce("verifier", None, "plain") is False
