import pytest

from crmrelay.cache import TTLCache
from crmrelay.crm import CRMError
from crmrelay.models import Attribute, ListDefinition, ObjectDefinition, WorkspaceMember
from crmrelay.schema import SchemaService


class FakeAttio:
    def __init__(self):
        self.calls = []
        self.stages_error = None

    async def list_objects(self):
        self.calls.append("objects")
        return [ObjectDefinition(api_slug="people", singular_noun="Person")]

    async def list_lists(self):
        self.calls.append("lists")
        return [ListDefinition(api_slug="pipeline", name="Pipeline", parent_object="companies")]

    async def list_workspace_members(self):
        self.calls.append("members")
        return [WorkspaceMember(id="m1", first_name="Anna", last_name="Berg")]

    async def list_attributes(self, object_slug):
        self.calls.append(f"attributes:{object_slug}")
        return [
            Attribute(api_slug="name", title="Name", type="personal-name"),
            Attribute(api_slug="legacy", title="Legacy", type="text", is_archived=True),
        ]

    async def list_deal_stages(self):
        self.calls.append("stages")
        if self.stages_error:
            raise CRMError(self.stages_error)
        return ["Lead", "Won"]


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class TestSchemaService:
    @pytest.mark.asyncio
    async def test_loads_schema_without_archived_attributes(self):
        client = FakeAttio()
        schema = await SchemaService(client).get()

        assert [o.api_slug for o in schema.objects] == ["people"]
        assert [a.api_slug for a in schema.objects[0].attributes] == ["name"]
        assert schema.lists[0].api_slug == "pipeline"
        assert schema.member("m1").full_name == "Anna Berg"

    @pytest.mark.asyncio
    async def test_schema_is_cached_until_ttl(self):
        client = FakeAttio()
        clock = FakeClock()
        service = SchemaService(client, cache=TTLCache(clock=clock), ttl=300)

        await service.get()
        await service.get()
        assert client.calls.count("objects") == 1

        clock.now = 301
        await service.get()
        assert client.calls.count("objects") == 2

    @pytest.mark.asyncio
    async def test_deal_stages_cached(self):
        client = FakeAttio()
        service = SchemaService(client)
        assert await service.deal_stages() == ["Lead", "Won"]
        assert await service.deal_stages() == ["Lead", "Won"]
        assert client.calls.count("stages") == 1

    @pytest.mark.asyncio
    async def test_deal_stages_failure_is_empty(self):
        client = FakeAttio()
        client.stages_error = "Attio API error: 500 - down"
        service = SchemaService(client)
        assert await service.deal_stages() == []
        # Failures are not cached.
        client.stages_error = None
        assert await service.deal_stages() == ["Lead", "Won"]

    @pytest.mark.asyncio
    async def test_schema_failure_propagates(self):
        client = FakeAttio()

        async def broken():
            raise CRMError("CRM request failed: refused")

        client.list_lists = broken
        with pytest.raises(CRMError):
            await SchemaService(client).get()
