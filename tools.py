"""MCP tools, resources and prompts exposed by the connector.

The handlers only format requests and results; the memories themselves live
behind a MemoryService. The default InMemoryMemoryService keeps everything in
process, which is enough for local use and tests. Swap it with set_memory_service().
"""

import json
import logging
import re
import threading
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Literal, Optional, Protocol

from fastmcp import FastMCP

logger = logging.getLogger(__name__)

CONNECTOR_VERSION = "1.0.0"
MCP_PROTOCOL_VERSION = "2025-06-18"

Sector = Literal["episodic", "semantic", "procedural", "emotional", "reflective"]

SECTOR_DESCRIPTIONS = {
    "episodic": "experience/event",
    "semantic": "fact/knowledge",
    "procedural": "process/how-to",
    "emotional": "feeling/sentiment",
    "reflective": "insight/reflection",
}

# Keyword hints for the in-process classifier; anything else is semantic
SECTOR_HINTS = {
    "episodic": ("yesterday", "today", "last week", "happened", "met", "went"),
    "procedural": ("how to", "step", "install", "run ", "configure", "first,"),
    "emotional": ("feel", "felt", "happy", "sad", "angry", "love", "hate", "afraid"),
    "reflective": ("realized", "learned", "insight", "i think", "in hindsight"),
}

TOOLS = {
    "memory_search": "Search through memories using natural language",
    "memory_store": "Store a new memory with automatic categorization",
    "memory_recall": "Retrieve a specific memory by ID",
    "memory_reinforce": "Strengthen a memory for better recall",
    "memory_list": "List recent memories",
}

RESOURCES = {
    "memory-stats": ("openmemory://stats", "Memory system statistics"),
    "memory-config": ("openmemory://config", "System configuration"),
}


@dataclass
class Memory:
    id: str
    content: str
    primary_sector: str
    salience: float = 0.5
    tags: list = field(default_factory=list)
    metadata: dict = field(default_factory=dict)
    created_at: str = ""
    last_seen_at: str = ""


@dataclass
class SearchMatch:
    memory: Memory
    score: float


class MemoryService(Protocol):
    def search(self, query: str, limit: int, sector: Optional[str] = None) -> list: ...

    def store(self, content: str, tags: list, metadata: dict) -> Memory: ...

    def get(self, memory_id: str) -> Optional[Memory]: ...

    def reinforce(self, memory_id: str, amount: float) -> Optional[Memory]: ...

    def recent(self, limit: int, sector: Optional[str] = None) -> list: ...

    def stats(self) -> list: ...


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _words(text: str) -> set:
    return set(re.findall(r"[a-z0-9]+", text.lower()))


def classify(content: str) -> str:
    lowered = content.lower()
    for sector, hints in SECTOR_HINTS.items():
        if any(hint in lowered for hint in hints):
            return sector
    return "semantic"


class InMemoryMemoryService:
    """Process-local memory store with keyword-overlap scoring."""

    def __init__(self):
        self._memories: dict[str, Memory] = {}
        self._lock = threading.Lock()

    def search(self, query: str, limit: int, sector: Optional[str] = None) -> list:
        terms = _words(query)
        if not terms:
            return []
        matches = []
        with self._lock:
            candidates = list(self._memories.values())
        for memory in candidates:
            if sector and memory.primary_sector != sector:
                continue
            overlap = len(terms & _words(memory.content))
            if overlap:
                matches.append(SearchMatch(memory, overlap / len(terms)))
        matches.sort(key=lambda m: (m.score, m.memory.salience), reverse=True)
        for match in matches[:limit]:
            match.memory.last_seen_at = _now()
        return matches[:limit]

    def store(self, content: str, tags: list, metadata: dict) -> Memory:
        now = _now()
        memory = Memory(
            id=str(uuid.uuid4()),
            content=content,
            primary_sector=classify(content),
            tags=list(tags),
            metadata=dict(metadata),
            created_at=now,
            last_seen_at=now,
        )
        with self._lock:
            self._memories[memory.id] = memory
        return memory

    def get(self, memory_id: str) -> Optional[Memory]:
        with self._lock:
            return self._memories.get(memory_id)

    def reinforce(self, memory_id: str, amount: float) -> Optional[Memory]:
        with self._lock:
            memory = self._memories.get(memory_id)
            if memory is None:
                return None
            memory.salience = min(1.0, max(0.0, memory.salience + amount))
            memory.last_seen_at = _now()
            return memory

    def recent(self, limit: int, sector: Optional[str] = None) -> list:
        with self._lock:
            memories = [m for m in self._memories.values() if not sector or m.primary_sector == sector]
        memories.sort(key=lambda m: m.created_at, reverse=True)
        return memories[:limit]

    def stats(self) -> list:
        by_sector: dict[str, list] = {}
        with self._lock:
            for memory in self._memories.values():
                by_sector.setdefault(memory.primary_sector, []).append(memory.salience)
        return [
            {"sector": sector, "count": len(values), "avg_salience": sum(values) / len(values)}
            for sector, values in sorted(by_sector.items())
        ]


_service: MemoryService = InMemoryMemoryService()


def set_memory_service(service: MemoryService) -> None:
    global _service
    _service = service


def get_memory_service() -> MemoryService:
    return _service


def _trunc(text: str, limit: int = 200) -> str:
    return text if len(text) <= limit else f"{text[:limit].rstrip()}..."


# ============== FastMCP Server ==============

mcp = FastMCP("openmemory")


@mcp.tool(description="Search through your memories using natural language. Returns relevant memories based on similarity.")
def memory_search(query: str, limit: int = 5, sector: Optional[Sector] = None) -> str:
    """Search memories.

    Args:
        query: What you're looking for - a question, topic, or description
        limit: Maximum number of memories to return (1-20)
        sector: Optional memory type filter
    """
    if not query.strip():
        raise ValueError("query text is required")
    limit = max(1, min(limit, 20))
    matches = _service.search(query, limit, sector)
    logger.info(f"[TOOL] memory_search returned {len(matches)} matches")

    if not matches:
        return "No memories found matching your query. Try a different search term or store some memories first."

    summary = "\n\n".join(
        f"{idx}. [{m.memory.primary_sector}] (relevance: {m.score * 100:.0f}%)\n   {_trunc(m.memory.content, 150)}"
        for idx, m in enumerate(matches, start=1)
    )
    results = [
        {
            "rank": idx,
            "id": m.memory.id,
            "content": m.memory.content,
            "type": m.memory.primary_sector,
            "relevance": round(m.score, 3),
            "strength": round(m.memory.salience, 3),
            "last_accessed": m.memory.last_seen_at,
        }
        for idx, m in enumerate(matches, start=1)
    ]
    return f"Found {len(matches)} relevant memories:\n\n{summary}\n\n{json.dumps({'query': query, 'results': results}, indent=2)}"


@mcp.tool(description="Store a new memory. It is categorized automatically (episodic, semantic, procedural, emotional, or reflective).")
def memory_store(content: str, tags: Optional[list[str]] = None, context: Optional[dict] = None) -> str:
    if not content.strip():
        raise ValueError("content is required")
    memory = _service.store(content, tags or [], context or {})
    logger.info(f"[TOOL] memory_store saved {memory.id} ({memory.primary_sector})")
    return (
        f"Memory stored successfully!\n\nID: {memory.id}\n"
        f"Type: {memory.primary_sector} ({SECTOR_DESCRIPTIONS[memory.primary_sector]})"
    )


@mcp.tool(description="Get the details of a specific memory by its ID")
def memory_recall(id: str) -> str:
    memory = _service.get(id)
    if memory is None:
        return f'Memory with ID "{id}" not found.'
    return f"Memory: {memory.content}\n\n{json.dumps(asdict(memory), indent=2)}"


@mcp.tool(description="Strengthen a memory to make it more prominent in future searches")
def memory_reinforce(id: str, amount: float = 0.1) -> str:
    amount = max(0.01, min(amount, 0.5))
    memory = _service.reinforce(id, amount)
    if memory is None:
        return f'Memory with ID "{id}" not found.'
    return f"Memory {id} has been reinforced by {amount * 100:.0f}%"


@mcp.tool(description="List recent memories, optionally filtered by type")
def memory_list(limit: int = 10, type: Optional[Sector] = None) -> str:
    limit = max(1, min(limit, 50))
    memories = _service.recent(limit, type)
    if not memories:
        return "No memories stored yet. Use memory_store to add your first memory!"
    return "Recent memories:\n\n" + "\n\n".join(
        f"{idx}. [{m.primary_sector}] (strength: {m.salience * 100:.0f}%)\n   {_trunc(m.content, 240)}"
        for idx, m in enumerate(memories, start=1)
    )


@mcp.resource("openmemory://stats", name="memory-stats", mime_type="application/json")
def memory_stats() -> str:
    """Current memory system statistics and health."""
    stats = _service.stats()
    return json.dumps({
        "total_memories": sum(s["count"] for s in stats),
        "by_sector": stats,
        "server": {"version": CONNECTOR_VERSION, "protocol": MCP_PROTOCOL_VERSION, "connector": "claude-web"},
    }, indent=2)


@mcp.resource("openmemory://config", name="memory-config", mime_type="application/json")
def memory_config() -> str:
    """Sector definitions and the available tools/resources."""
    return json.dumps({
        "sectors": SECTOR_DESCRIPTIONS,
        "available_tools": list(TOOLS),
        "resources": list(RESOURCES),
    }, indent=2)


@mcp.prompt(name="summarize-memories", description="Create a summary of memories on a specific topic")
def summarize_memories(topic: str) -> str:
    return (
        f'Please search my memories for "{topic}" and create a comprehensive summary of what I know '
        "about this topic. Include key facts, experiences, and any insights I've stored."
    )


@mcp.prompt(name="reflect-on-day", description="Reflect on memories from today")
def reflect_on_day() -> str:
    return (
        "Please list my recent memories from today and help me reflect on them. "
        "What patterns do you notice? What insights can you draw?"
    )


def manifest_entries() -> dict:
    """Tool and resource listing for the discovery manifest."""
    return {
        "tools": [{"name": name, "description": desc} for name, desc in TOOLS.items()],
        "resources": [{"name": name, "uri": uri, "description": desc} for name, (uri, desc) in RESOURCES.items()],
    }
