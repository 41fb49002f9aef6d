import logging
import os

import httpx

from crmrelay.circuit_breaker import CircuitBreaker
from crmrelay.config import ConfigurationError
from crmrelay.models import (
    Attribute,
    CreatedRecord,
    ListDefinition,
    ObjectDefinition,
    SearchResult,
    WorkspaceMember,
)

logger = logging.getLogger(__name__)

ATTIO_BASE_URL = "https://api.attio.com/v2"
SEARCH_LIMIT = 10


class CRMError(Exception):
    """A CRM request failed or returned an error status."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class AttioClient:
    """HTTP client for the Attio REST API.

    Wraps each call with a circuit breaker: after 3 consecutive transport or
    server errors, calls fail fast for 30s with a CRMError instead of waiting
    on timeouts. Client errors (4xx) are the caller's fault and do not trip it.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = ATTIO_BASE_URL,
        timeout: float = 15.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._circuit = CircuitBreaker(
            failure_threshold=3,
            cooldown_seconds=30.0,
            label="Attio",
        )
        if client is not None:
            self._client = client
        else:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={
                    "Authorization": f"Bearer {api_key}",
                    "Content-Type": "application/json",
                },
                timeout=self.timeout,
            )

    @classmethod
    def from_env(cls, client: httpx.AsyncClient | None = None) -> "AttioClient":
        api_key = os.getenv("ATTIO_API_KEY", "")
        if not api_key:
            raise ConfigurationError("ATTIO_API_KEY not configured")
        return cls(api_key=api_key, client=client)

    async def close(self):
        """Close the shared HTTP client."""
        await self._client.aclose()

    async def _request(self, method: str, path: str, json: dict | None = None) -> dict:
        if not self._circuit.should_try():
            logger.warning("Attio circuit breaker open, skipping %s %s", method, path)
            raise CRMError("CRM temporarily unavailable, try again shortly")
        try:
            resp = await self._client.request(method, path, json=json)
        except httpx.HTTPError as e:
            self._circuit.record_failure()
            logger.error("Attio %s %s failed: %s", method, path, e)
            raise CRMError(f"CRM request failed: {e}") from e

        if resp.status_code >= 500:
            self._circuit.record_failure()
        else:
            self._circuit.record_success()
        if resp.status_code >= 400:
            logger.error("Attio %s %s returned %d: %s", method, path, resp.status_code, resp.text[:300])
            raise CRMError(
                f"Attio API error: {resp.status_code} - {resp.text[:300]}",
                status_code=resp.status_code,
            )
        try:
            return resp.json()
        except ValueError as e:
            logger.error("Attio %s %s returned invalid JSON: %s", method, path, resp.text[:300])
            raise CRMError(f"CRM returned invalid JSON: {e}") from e

    @staticmethod
    def _created_id(body: dict, id_key: str) -> str:
        """``body["data"]["id"][id_key]``; a malformed response raises CRMError."""
        try:
            value = body["data"]["id"][id_key]
        except (KeyError, TypeError) as e:
            logger.error("Attio response without data.id.%s: %s", id_key, str(body)[:300])
            raise CRMError(f"CRM response missing {id_key}") from e
        if not value:
            raise CRMError(f"CRM response missing {id_key}")
        return value

    # ── Writes ──

    async def create_record(self, object_slug: str, values: dict) -> CreatedRecord:
        body = await self._request(
            "POST", f"/objects/{object_slug}/records", json={"data": {"values": values}}
        )
        record_id = self._created_id(body, "record_id")
        record = CreatedRecord(id=record_id, url=body["data"].get("web_url") or "")
        logger.info("Created %s record %s", object_slug, record.id)
        return record

    async def create_note(self, parent_object: str, parent_record_id: str, title: str, content: str) -> str:
        body = await self._request(
            "POST",
            "/notes",
            json={
                "data": {
                    "parent_object": parent_object,
                    "parent_record_id": parent_record_id,
                    "title": title,
                    "format": "markdown",
                    "content": content,
                }
            },
        )
        return self._created_id(body, "note_id")

    async def create_task(self, payload: dict) -> CreatedRecord:
        body = await self._request("POST", "/tasks", json={"data": payload})
        task_id = self._created_id(body, "task_id")
        logger.info("Created task %s", task_id)
        return CreatedRecord(id=task_id)

    async def add_list_entry(self, list_slug: str, record_id: str, parent_object: str) -> str:
        body = await self._request(
            "POST",
            f"/lists/{list_slug}/entries",
            json={
                "data": {
                    "parent_record_id": record_id,
                    "parent_object": parent_object,
                    "entry_values": {},
                }
            },
        )
        return self._created_id(body, "entry_id")

    # ── Reads ──

    async def search(self, object_slug: str, query: str) -> list[SearchResult]:
        body = await self._request(
            "POST",
            "/objects/records/search",
            json={
                "query": query,
                "objects": [object_slug],
                "request_as": {"type": "workspace"},
                "limit": SEARCH_LIMIT,
            },
        )
        results = []
        for record in body.get("data", []):
            record_id = (record.get("id") or {}).get("record_id")
            if not record_id:
                continue
            domains = record.get("domains") or []
            results.append(SearchResult(
                id=record_id,
                name=record.get("record_text") or "Unknown",
                extra=domains[0] if domains else "",
            ))
        return results

    async def get_record_url(self, object_slug: str, record_id: str) -> str:
        """Web URL of a record, or "" when it cannot be fetched."""
        try:
            body = await self._request("GET", f"/objects/{object_slug}/records/{record_id}")
        except CRMError as e:
            logger.warning("Could not fetch URL for %s/%s: %s", object_slug, record_id, e)
            return ""
        return body.get("data", {}).get("web_url") or ""

    async def list_objects(self) -> list[ObjectDefinition]:
        body = await self._request("GET", "/objects")
        return [
            ObjectDefinition(
                api_slug=obj["api_slug"],
                singular_noun=obj.get("singular_noun") or obj["api_slug"],
                plural_noun=obj.get("plural_noun") or "",
            )
            for obj in body.get("data", [])
        ]

    async def list_attributes(self, object_slug: str) -> list[Attribute]:
        body = await self._request("GET", f"/objects/{object_slug}/attributes")
        return [
            Attribute(
                api_slug=attr["api_slug"],
                title=attr.get("title") or attr["api_slug"],
                type=attr.get("type") or "text",
                is_required=bool(attr.get("is_required")),
                is_writable=attr.get("is_writable", True),
                is_archived=bool(attr.get("is_archived")),
                description=attr.get("description") or "",
            )
            for attr in body.get("data", [])
        ]

    async def list_lists(self) -> list[ListDefinition]:
        body = await self._request("GET", "/lists")
        lists = []
        for item in body.get("data", []):
            parent = item.get("parent_object") or ""
            if isinstance(parent, list):
                parent = parent[0] if parent else ""
            lists.append(ListDefinition(api_slug=item["api_slug"], name=item.get("name") or "", parent_object=parent))
        return lists

    async def list_workspace_members(self) -> list[WorkspaceMember]:
        body = await self._request("GET", "/workspace_members")
        return [
            WorkspaceMember(
                id=member["id"]["workspace_member_id"],
                first_name=member.get("first_name") or "",
                last_name=member.get("last_name") or "",
                email=member.get("email_address") or "",
            )
            for member in body.get("data", [])
        ]

    async def list_deal_stages(self) -> list[str]:
        """Titles of non-archived deal stages, in CRM order."""
        body = await self._request("GET", "/objects/deals/attributes/stage/statuses")
        return [s["title"] for s in body.get("data", []) if not s.get("is_archived")]
