import asyncio
import logging

from crmrelay.cache import TTLCache
from crmrelay.crm import CRMError
from crmrelay.models import ObjectDefinition, WorkspaceSchema

logger = logging.getLogger(__name__)

SCHEMA_KEY = "schema"
DEAL_STAGES_KEY = "deal_stages"


class SchemaService:
    """Workspace schema and deal stages, cached process-wide.

    ``client`` is an AttioClient (or anything with its listing coroutines).
    Entries age out after ``ttl`` seconds and are never invalidated on write.
    """

    def __init__(self, client, cache: TTLCache | None = None, ttl: float = 300.0):
        self.client = client
        self.cache = cache if cache is not None else TTLCache(default_ttl=ttl)
        self.ttl = ttl

    async def get(self) -> WorkspaceSchema:
        return await self.cache.get_or_refresh(SCHEMA_KEY, self._load_schema, self.ttl)

    async def deal_stages(self) -> list[str]:
        """Active deal stage titles; empty when the CRM can't be asked."""
        try:
            return await self.cache.get_or_refresh(DEAL_STAGES_KEY, self.client.list_deal_stages, self.ttl)
        except CRMError as e:
            logger.warning("Could not load deal stages, creating deal without stage: %s", e)
            return []

    async def _load_schema(self) -> WorkspaceSchema:
        objects, lists, members = await asyncio.gather(
            self.client.list_objects(),
            self.client.list_lists(),
            self.client.list_workspace_members(),
        )
        await asyncio.gather(*(self._load_attributes(obj) for obj in objects))
        logger.info(
            "Loaded workspace schema: %d objects, %d lists, %d members",
            len(objects), len(lists), len(members),
        )
        return WorkspaceSchema(objects=objects, lists=lists, members=members)

    async def _load_attributes(self, obj: ObjectDefinition) -> None:
        attributes = await self.client.list_attributes(obj.api_slug)
        obj.attributes = [a for a in attributes if not a.is_archived]
