import pytest

from crmrelay.models import SearchResult
from crmrelay.search import EntityResolver
from tests.conftest import FakeRecordStore

P2P = SearchResult(id="c-p2p", name="P2P Staking", extra="p2p.org")
CFX = SearchResult(id="c-cfx", name="CFX Labs", extra="cfx.io")


class TestEntityResolver:
    @pytest.mark.asyncio
    async def test_exact_query_hit(self):
        store = FakeRecordStore(records={"companies": [SearchResult(id="c1", name="Acme")]})
        resolver = EntityResolver(store)
        results = await resolver.search("companies", "Acme")
        assert [r.id for r in results] == ["c1"]
        assert store.searches == [("companies", "Acme")]

    @pytest.mark.asyncio
    async def test_suffix_stripped_retry(self):
        store = FakeRecordStore(records={"companies": [SearchResult(id="c1", name="Acme")]})
        resolver = EntityResolver(store)
        result = await resolver.find_one("companies", "Acme Inc")
        assert result.id == "c1"
        assert store.searches == [("companies", "Acme Inc"), ("companies", "acme")]

    @pytest.mark.asyncio
    async def test_short_name_found_through_domain_guess_without_noise(self):
        # Full-text search returns nothing for the bare token and noise for the domain.
        store = FakeRecordStore(responses={"p2p": [], "p2p.io": [P2P, CFX]})
        resolver = EntityResolver(store)
        results = await resolver.search("companies", "p2p")
        assert [r.name for r in results] == ["P2P Staking"]
        assert ("companies", "p2p.com") in store.searches

    @pytest.mark.asyncio
    async def test_broad_prefix_stage(self):
        store = FakeRecordStore(responses={"abc": [
            SearchResult(id="c9", name="Abcd Robotics"),
            SearchResult(id="c8", name="Abc Foods"),
        ]})
        resolver = EntityResolver(store)
        results = await resolver.search("companies", "abcd")
        assert [r.id for r in results] == ["c9"]
        assert store.searches[-1] == ("companies", "abc")

    @pytest.mark.asyncio
    async def test_noise_only_returns_nothing(self):
        store = FakeRecordStore(responses={"p2p": [CFX]})
        resolver = EntityResolver(store)
        assert await resolver.search("companies", "p2p") == []
        assert await resolver.find_one("companies", "p2p") is None

    @pytest.mark.asyncio
    async def test_blank_query_skips_search(self):
        store = FakeRecordStore()
        resolver = EntityResolver(store)
        assert await resolver.search("companies", "  ") == []
        assert store.searches == []
