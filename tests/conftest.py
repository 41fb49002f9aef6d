import pytest

from crmrelay.classifier import ClassifierError
from crmrelay.crm import CRMError
from crmrelay.executor import ActionExecutor
from crmrelay.models import CreatedRecord, SearchResult, SuggestedAction, WorkspaceMember, WorkspaceSchema
from crmrelay.session import CallerInfo, ConversationSession
from crmrelay.state_machine import ConversationStateMachine

MEMBERS = [
    WorkspaceMember(id="m-anna", first_name="Anna", last_name="Berg", email="anna@example.com"),
    WorkspaceMember(id="m-bob", first_name="Bob", last_name="Stone", email="bob@example.com"),
    WorkspaceMember(id="m-carla", first_name="Carla", last_name="Diaz", email="carla@example.com"),
    WorkspaceMember(id="m-dan", first_name="Dan", last_name="Ng", email="dan@example.com"),
    WorkspaceMember(id="m-eve", first_name="Eve", last_name="Fox", email="eve@example.com"),
    WorkspaceMember(id="m-finn", first_name="Finn", last_name="Gale", email="finn@example.com"),
    WorkspaceMember(id="m-gus", first_name="Gus", last_name="Hale", email="gus@example.com"),
]


class FakeTransport:
    """Records everything the bot would have shown, in order."""

    def __init__(self):
        self.outputs = []  # (kind, message_id, text, keyboard)
        self.answered = []
        self._next_id = 100

    async def send_message(self, chat_id, text, keyboard=None):
        self._next_id += 1
        self.outputs.append(("send", self._next_id, text, keyboard))
        return self._next_id

    async def edit_message(self, chat_id, message_id, text, keyboard=None):
        self.outputs.append(("edit", message_id, text, keyboard))

    async def answer_callback(self, callback_id, text=""):
        self.answered.append(callback_id)

    @property
    def last_text(self):
        return self.outputs[-1][2] if self.outputs else ""

    @property
    def last_keyboard(self):
        return self.outputs[-1][3] if self.outputs else None

    def callback_data(self):
        """Every callback_data on the last keyboard."""
        return [b["callback_data"] for row in (self.last_keyboard or []) for b in row]


class FakeRecordStore:
    """CRM stand-in: substring search over known records, writes recorded.

    ``responses`` maps an exact query to the raw results the CRM would return,
    for simulating noisy full-text search.
    """

    def __init__(self, records=None, responses=None):
        self.records = {slug: list(items) for slug, items in (records or {}).items()}
        self.responses = responses or {}
        self.searches = []
        self.created = []
        self.notes = []
        self.tasks = []
        self.list_entries = []
        self.fail_on = set()
        self._counter = 0

    def _maybe_fail(self, method):
        if method in self.fail_on:
            raise CRMError(f"Attio API error: 500 - {method} exploded", status_code=500)

    @property
    def writes(self):
        return len(self.created) + len(self.notes) + len(self.tasks) + len(self.list_entries)

    def created_of(self, slug):
        return [values for s, values in self.created if s == slug]

    async def search(self, object_slug, query):
        self.searches.append((object_slug, query))
        self._maybe_fail("search")
        if query in self.responses:
            return list(self.responses[query])
        q = query.lower()
        return [
            r for r in self.records.get(object_slug, [])
            if q in r.name.lower() or (r.extra and q in r.extra.lower())
        ]

    async def create_record(self, object_slug, values):
        self._maybe_fail("create_record")
        self._maybe_fail(f"create_record:{object_slug}")
        self._counter += 1
        record_id = f"{object_slug}-{self._counter}"
        self.created.append((object_slug, values))
        name = values.get("name")
        if isinstance(name, dict):
            name = name.get("full_name", "")
        self.records.setdefault(object_slug, []).append(SearchResult(id=record_id, name=name or ""))
        return CreatedRecord(id=record_id, url=f"https://app.attio.com/acme/{object_slug}/{record_id}")

    async def create_note(self, parent_object, parent_record_id, title, content):
        self._maybe_fail("create_note")
        self.notes.append((parent_object, parent_record_id, title, content))
        return f"note-{len(self.notes)}"

    async def create_task(self, payload):
        self._maybe_fail("create_task")
        self.tasks.append(payload)
        return CreatedRecord(id=f"task-{len(self.tasks)}")

    async def add_list_entry(self, list_slug, record_id, parent_object):
        self._maybe_fail("add_list_entry")
        self.list_entries.append((list_slug, record_id, parent_object))
        return f"entry-{len(self.list_entries)}"

    async def get_record_url(self, object_slug, record_id):
        return f"https://app.attio.com/acme/{object_slug}/{record_id}"


class FakeClassifier:
    """Returns fresh SuggestedActions built from canned payload dicts."""

    def __init__(self, result=None, reclassify_result=None, error=None):
        self.result = result
        self.reclassify_result = reclassify_result
        self.error = error
        self.calls = []

    async def classify(self, messages, instruction, schema):
        self.calls.append(("classify", [m.text for m in messages], instruction))
        if self.error:
            raise ClassifierError(self.error)
        return SuggestedAction.from_dict(self.result)

    async def reclassify(self, previous, field, reply, schema):
        self.calls.append(("reclassify", field, reply))
        if self.error:
            raise ClassifierError(self.error)
        return SuggestedAction.from_dict(self.reclassify_result or previous.to_dict())


class FakeSchemaService:
    def __init__(self, members=None, stages=None):
        self.schema = WorkspaceSchema(members=list(MEMBERS if members is None else members))
        self.stages = ["Lead", "Qualified", "Won"] if stages is None else stages

    async def get(self):
        return self.schema

    async def deal_stages(self):
        return list(self.stages)


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def record_store():
    return FakeRecordStore()


@pytest.fixture
def schema_service():
    return FakeSchemaService()


@pytest.fixture
def classifier():
    return FakeClassifier(result={"intent": "create_company", "confidence": 0.9, "extractedData": {"name": "Acme"}})


@pytest.fixture
def executor(record_store, schema_service):
    return ActionExecutor(record_store, schema=schema_service)


@pytest.fixture
def machine(transport, classifier, executor, schema_service):
    return ConversationStateMachine(transport, classifier, executor, schema_service)


@pytest.fixture
def session():
    return ConversationSession(
        chat_id=1,
        user_id=2,
        caller_info=CallerInfo(first_name="Anna", last_name="Berg", username="anna"),
    )
