"""Tests for the memory tools and the in-process memory service."""

import json

import pytest
from fastmcp import Client

import tools
from tools import InMemoryMemoryService, classify, manifest_entries


@pytest.fixture
def service():
    previous = tools.get_memory_service()
    fresh = InMemoryMemoryService()
    tools.set_memory_service(fresh)
    yield fresh
    tools.set_memory_service(previous)


@pytest.mark.parametrize("content,sector", [
    ("Yesterday I met Ana for coffee", "episodic"),
    ("How to configure the proxy: first, edit the file", "procedural"),
    ("I felt happy about the release", "emotional"),
    ("I realized tests catch the edge cases", "reflective"),
    ("Paris is the capital of France", "semantic"),
])
def test_classify(content, sector):
    assert classify(content) == sector


class TestInMemoryMemoryService:
    def test_search_ranks_by_overlap(self, service):
        service.store("python packaging with pyproject", [], {})
        best = service.store("python packaging guide for pyproject builds", [], {})

        matches = service.search("pyproject builds", limit=5)

        assert matches[0].memory.id == best.id
        assert matches[0].score == 1.0
        assert len(matches) == 2

    def test_search_filters_sector(self, service):
        service.store("I felt sad about the weather", [], {})
        service.store("The weather in Lisbon is mild", [], {})

        matches = service.search("weather", limit=5, sector="semantic")

        assert [m.memory.primary_sector for m in matches] == ["semantic"]

    def test_blank_query_matches_nothing(self, service):
        service.store("anything", [], {})
        assert service.search("   ", limit=5) == []

    def test_reinforce_is_clamped(self, service):
        memory = service.store("fact", [], {})
        assert service.reinforce(memory.id, 0.9).salience == 1.0
        assert service.reinforce("missing", 0.1) is None

    def test_stats_by_sector(self, service):
        service.store("fact one", [], {})
        service.store("fact two", [], {})
        assert service.stats() == [{"sector": "semantic", "count": 2, "avg_salience": 0.5}]


async def test_store_then_recall_over_mcp(service):
    async with Client(tools.mcp) as client:
        stored = await client.call_tool("memory_store", {"content": "The build uses setuptools"})
        memory_id = stored.content[0].text.split("ID: ")[1].splitlines()[0]

        recalled = await client.call_tool("memory_recall", {"id": memory_id})
        assert "The build uses setuptools" in recalled.content[0].text

        missing = await client.call_tool("memory_recall", {"id": "nope"})
        assert 'Memory with ID "nope" not found.' == missing.content[0].text


async def test_stats_resource(service):
    service.store("fact", [], {})
    async with Client(tools.mcp) as client:
        contents = await client.read_resource("openmemory://stats")
    data = json.loads(contents[0].text)
    assert data["total_memories"] == 1


async def test_tools_are_listed(service):
    async with Client(tools.mcp) as client:
        listed = {tool.name for tool in await client.list_tools()}
    assert listed == set(tools.TOOLS)


def test_manifest_entries():
    entries = manifest_entries()
    assert [t["name"] for t in entries["tools"]] == list(tools.TOOLS)
    assert {r["uri"] for r in entries["resources"]} == {"openmemory://stats", "openmemory://config"}
