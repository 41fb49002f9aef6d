"""Turns a confirmed suggested action into CRM writes.

Order of work for one execution:

1. Prerequisites (companies, people) are searched first and only created when
   nothing matches. Their ids are kept by role ("company", "person") so the
   main action can link to them.
2. The main intent runs. Companies mentioned only by name are resolved with
   fuzzy search and created on the fly when missing.
3. The forwarded conversation is attached as a note to the parent record.
4. Implicitly created records are reported back for display.

Nothing is rolled back: a failure after a prerequisite was created leaves that
record in the CRM.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from crmrelay.crm import CRMError
from crmrelay.deadline import parse_deadline
from crmrelay.fields import lookup, lookup_text
from crmrelay.models import ActionResult, CreatedPrerequisite, Intent, SuggestedAction
from crmrelay.search import EntityResolver
from crmrelay.values import (
    company_values,
    deal_values,
    parse_company_input,
    parse_money,
    person_values,
    task_payload,
)

logger = logging.getLogger(__name__)

DEFAULT_NOTE_TITLE = "Forwarded conversation"


def has_note_target(action: SuggestedAction) -> bool:
    """Whether an add_note names something to attach to (a picked record, a company or a person)."""
    data = action.extracted_data
    return bool(
        lookup_text(data, "parent_record_id")
        or lookup_text(data, "company")
        or lookup_text(data, "person")
    )


@dataclass
class _Execution:
    """Scratch state for one execute() call."""

    action: SuggestedAction
    original_instruction: Optional[str] = None
    caller_email: str = ""
    created_records: dict = field(default_factory=dict)
    record_urls: dict = field(default_factory=dict)
    created_prerequisites: list = field(default_factory=list)
    parent_object: str = ""
    parent_record_id: str = ""

    @property
    def data(self) -> dict:
        return self.action.extracted_data


class ActionExecutor:
    """Executes suggested actions against a record store.

    ``store`` is an AttioClient or anything exposing the same coroutines.
    ``schema`` (a SchemaService) supplies deal stages; without it deals are
    created with the CRM's default stage.
    """

    def __init__(self, store, resolver: EntityResolver | None = None, schema=None):
        self.store = store
        self.resolver = resolver if resolver is not None else EntityResolver(store)
        self.schema = schema
        self._handlers = {
            Intent.CREATE_PERSON.value: self._create_person,
            Intent.CREATE_COMPANY.value: self._create_company,
            Intent.CREATE_DEAL.value: self._create_deal,
            Intent.CREATE_TASK.value: self._create_task,
            Intent.ADD_NOTE.value: self._add_note,
            Intent.ADD_TO_LIST.value: self._add_to_list,
        }

    async def execute(
        self,
        action: SuggestedAction,
        note_content: str,
        original_instruction: Optional[str] = None,
        caller_email: str = "",
    ) -> ActionResult:
        """Run ``action``; ``caller_email`` owns deals that name no owner."""
        handler = self._handlers.get(action.intent)
        if handler is None:
            logger.warning("Refusing to execute unknown intent %r", action.intent)
            return ActionResult(success=False, error=f"Unknown intent: {action.intent}")

        run = _Execution(action=action, original_instruction=original_instruction, caller_email=caller_email)

        try:
            await self._run_prerequisites(run)
        except CRMError as e:
            logger.error("Prerequisite failed for %s: %s", action.intent, e)
            return ActionResult(
                success=False,
                error=f"Failed to create prerequisite: {e}",
                created_prerequisites=list(run.created_prerequisites),
            )

        try:
            result = await handler(run)
        except CRMError as e:
            logger.error("Executing %s failed: %s", action.intent, e)
            result = ActionResult(success=False, error=str(e))

        if result.success and run.parent_record_id and note_content.strip():
            await self._attach_note(run, note_content, result)

        result.created_prerequisites = list(run.created_prerequisites)
        logger.info(
            "Executed %s: success=%s record=%s prerequisites=%d",
            action.intent, result.success, result.record_id or "-", len(result.created_prerequisites),
        )
        return result

    # ── Prerequisites ──

    async def _run_prerequisites(self, run: _Execution) -> None:
        for prereq in run.action.prerequisite_actions:
            data = prereq.extracted_data
            if prereq.intent == Intent.CREATE_COMPANY.value:
                name = lookup_text(data, "name")
                if not name:
                    continue
                existing = await self.resolver.find_one("companies", name)
                if existing:
                    run.created_records["company"] = existing.id
                    continue
                record = await self.store.create_record("companies", company_values(
                    name,
                    domain=lookup_text(data, "domain"),
                    location=lookup_text(data, "location"),
                ))
                self._remember_created(run, "company", name, record)

            elif prereq.intent == Intent.CREATE_PERSON.value:
                name = lookup_text(data, "name")
                email = lookup_text(data, "email")
                if not name and not email:
                    continue
                existing = await self.resolver.find_one("people", name) if name else None
                if existing:
                    run.created_records["person"] = existing.id
                    continue
                record = await self.store.create_record("people", person_values(
                    name,
                    email=email,
                    company_id=run.created_records.get("company", ""),
                ))
                self._remember_created(run, "person", name or email, record)

    def _remember_created(self, run: _Execution, role: str, name: str, record) -> None:
        run.created_records[role] = record.id
        run.record_urls[role] = record.url
        run.created_prerequisites.append(CreatedPrerequisite(name=name, url=record.url, kind=role))
        logger.info("Created prerequisite %s %r (%s)", role, name, record.id)

    async def _resolve_company(self, run: _Execution, mention: str) -> tuple[str, str]:
        """(record id, url) for a company named in free text, creating it if unknown.

        The url is "" for existing companies; callers fetch it when needed.
        """
        name, domain = parse_company_input(mention)
        existing = await self.resolver.find_one("companies", name)
        if existing:
            return existing.id, ""
        record = await self.store.create_record("companies", company_values(name, domain=domain))
        run.created_prerequisites.append(CreatedPrerequisite(name=name, url=record.url, kind="company"))
        logger.info("Created company %r on the fly (%s)", name, record.id)
        return record.id, record.url

    async def _company_id(self, run: _Execution) -> str:
        company_id = run.created_records.get("company", "")
        if company_id:
            return company_id
        mention = lookup_text(run.data, "company")
        if not mention:
            return ""
        company_id, _ = await self._resolve_company(run, mention)
        return company_id

    # ── Intents ──

    async def _create_person(self, run: _Execution) -> ActionResult:
        data = run.data
        company_id = await self._company_id(run)
        record = await self.store.create_record("people", person_values(
            lookup_text(data, "name"),
            email=lookup_text(data, "email"),
            phone=lookup_text(data, "phone"),
            company_id=company_id,
            job_title=lookup_text(data, "job_title"),
            description=lookup_text(data, "description"),
        ))
        run.parent_object, run.parent_record_id = "people", record.id
        return ActionResult(success=True, record_id=record.id, record_url=record.url)

    async def _create_company(self, run: _Execution) -> ActionResult:
        data = run.data
        record = await self.store.create_record("companies", company_values(
            lookup_text(data, "name"),
            domain=lookup_text(data, "domain"),
            location=lookup_text(data, "location"),
            description=lookup_text(data, "description"),
        ))
        run.parent_object, run.parent_record_id = "companies", record.id
        return ActionResult(success=True, record_id=record.id, record_url=record.url)

    async def _create_deal(self, run: _Execution) -> ActionResult:
        data = run.data
        company_id = await self._company_id(run)
        stages = await self.schema.deal_stages() if self.schema is not None else []
        record = await self.store.create_record("deals", deal_values(
            lookup_text(data, "name"),
            value=parse_money(lookup(data, "value")),
            stage=stages[0] if stages else "",
            company_id=company_id,
            owner=lookup_text(data, "owner") or run.caller_email,
        ))
        run.parent_object, run.parent_record_id = "deals", record.id
        return ActionResult(success=True, record_id=record.id, record_url=record.url)

    async def _create_task(self, run: _Execution) -> ActionResult:
        data = run.data
        content = lookup_text(data, "task_content")
        if not content:
            return ActionResult(success=False, error="Missing task content")

        linked_object, linked_id, company_url = "", "", ""
        if run.created_records.get("company"):
            linked_object, linked_id = "companies", run.created_records["company"]
            company_url = run.record_urls.get("company", "")
        elif run.created_records.get("person"):
            linked_object, linked_id = "people", run.created_records["person"]
        elif lookup_text(data, "linked_record_id"):
            linked_id = lookup_text(data, "linked_record_id")
            linked_object = lookup_text(data, "linked_record_object") or "companies"
        elif lookup_text(data, "company"):
            linked_object = "companies"
            linked_id, company_url = await self._resolve_company(run, lookup_text(data, "company"))

        if linked_object == "companies" and linked_id and not company_url:
            company_url = await self.store.get_record_url("companies", linked_id)

        deadline = parse_deadline(run.original_instruction) if run.original_instruction else None
        if deadline is None:
            raw = lookup_text(data, "deadline")
            deadline = parse_deadline(raw) if raw else None

        task = await self.store.create_task(task_payload(
            content,
            deadline_at=deadline,
            linked_object=linked_object,
            linked_record_id=linked_id,
            assignee_id=lookup_text(data, "assignee_id"),
        ))
        # Tasks are not note parents, so no note is attached.
        return ActionResult(
            success=True,
            record_id=task.id,
            record_url=f"{company_url}/tasks" if company_url else "",
        )

    async def _find_named_record(self, data: dict) -> tuple[str, str]:
        """(object, record id) of the company or person named in ``data``."""
        company = lookup_text(data, "company")
        if company:
            name, _ = parse_company_input(company)
            hit = await self.resolver.find_one("companies", name)
            if hit:
                return "companies", hit.id
        person = lookup_text(data, "person")
        if person:
            hit = await self.resolver.find_one("people", person)
            if hit:
                return "people", hit.id
        return "", ""

    async def _add_note(self, run: _Execution) -> ActionResult:
        parent_id = lookup_text(run.data, "parent_record_id")
        if parent_id:
            parent_object = lookup_text(run.data, "parent_object") or "companies"
        else:
            parent_object, parent_id = await self._find_named_record(run.data)
        if not parent_id:
            return ActionResult(success=False, error="Could not find target record for note")
        run.parent_object, run.parent_record_id = parent_object, parent_id
        url = await self.store.get_record_url(parent_object, parent_id)
        return ActionResult(success=True, record_id=parent_id, record_url=url)

    async def _add_to_list(self, run: _Execution) -> ActionResult:
        data = run.data
        list_slug = run.action.target_list or lookup_text(data, "list")
        record_id = lookup_text(data, "record_id")
        parent_object = run.action.target_object or "companies"
        if list_slug and not record_id:
            found_object, record_id = await self._find_named_record(data)
            parent_object = found_object or parent_object
        if not list_slug or not record_id:
            return ActionResult(success=False, error="Missing list or record ID")

        await self.store.add_list_entry(list_slug, record_id, parent_object)
        run.parent_object, run.parent_record_id = parent_object, record_id
        url = await self.store.get_record_url(parent_object, record_id)
        return ActionResult(success=True, record_id=record_id, record_url=url)

    # ── Note ──

    async def _attach_note(self, run: _Execution, content: str, result: ActionResult) -> None:
        title = run.action.note_title or DEFAULT_NOTE_TITLE
        try:
            result.note_id = await self.store.create_note(
                run.parent_object, run.parent_record_id, title, content
            )
        except CRMError as e:
            logger.warning("Note on %s/%s failed: %s", run.parent_object, run.parent_record_id, e)
            result.note_error = str(e)
