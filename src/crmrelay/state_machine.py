import logging
import time

from crmrelay.assignee import ResolvedAssignee, caller_member, resolve_assignee
from crmrelay.classifier import ClassifierError
from crmrelay.crm import CRMError
from crmrelay.events import CallbackQueryEvent
from crmrelay.executor import has_note_target
from crmrelay.fields import lookup_text
from crmrelay.formatting import (
    HELP_TEXT,
    WELCOME_TEXT,
    editable_fields,
    field_label,
    format_clarification,
    format_messages_for_note,
    format_result,
    format_suggested_action,
    intent_label,
    truncate,
)
from crmrelay.keyboards import (
    CallbackAction,
    assignee_keyboard,
    assignee_page_count,
    button,
    clarification_keyboard,
    confirmation_keyboard,
    edit_fields_keyboard,
    note_parent_results_keyboard,
    note_parent_type_keyboard,
    parse_callback_data,
)
from crmrelay.models import Intent, SuggestedAction
from crmrelay.session import ConversationSession
from crmrelay.states import State
from crmrelay.targets import (
    SELECTION_FIELDS,
    TARGET_TYPE_FIELD,
    enforce_add_to_pattern,
    is_target_type,
    resolve_selection,
    resolve_target_type,
)

logger = logging.getLogger(__name__)

TRANSITIONS = {
    State.IDLE: {State.GATHERING_MESSAGES, State.AWAITING_INSTRUCTION, State.PROCESSING_AI},
    State.GATHERING_MESSAGES: {State.AWAITING_INSTRUCTION, State.PROCESSING_AI},
    State.AWAITING_INSTRUCTION: {State.PROCESSING_AI, State.GATHERING_MESSAGES},
    State.PROCESSING_AI: {State.AWAITING_CONFIRMATION, State.IDLE},
    State.AWAITING_CONFIRMATION: {
        State.AWAITING_CLARIFICATION, State.AWAITING_EDIT_VALUE,
        State.AWAITING_ASSIGNEE_SELECTION, State.AWAITING_NOTE_PARENT_TYPE, State.EXECUTING,
        State.PROCESSING_AI, State.GATHERING_MESSAGES,
    },
    State.AWAITING_CLARIFICATION: {State.AWAITING_CONFIRMATION, State.PROCESSING_AI, State.GATHERING_MESSAGES},
    State.AWAITING_EDIT_VALUE: {State.AWAITING_CONFIRMATION, State.PROCESSING_AI, State.GATHERING_MESSAGES},
    State.AWAITING_ASSIGNEE_SELECTION: {
        State.AWAITING_CONFIRMATION, State.AWAITING_ASSIGNEE_INPUT,
        State.PROCESSING_AI, State.GATHERING_MESSAGES,
    },
    State.AWAITING_ASSIGNEE_INPUT: {
        State.AWAITING_CONFIRMATION, State.AWAITING_ASSIGNEE_SELECTION,
        State.PROCESSING_AI, State.GATHERING_MESSAGES,
    },
    State.AWAITING_NOTE_PARENT_TYPE: {
        State.AWAITING_NOTE_PARENT_SEARCH, State.PROCESSING_AI, State.GATHERING_MESSAGES,
    },
    State.AWAITING_NOTE_PARENT_SEARCH: {
        State.AWAITING_NOTE_PARENT_SELECTION, State.PROCESSING_AI, State.GATHERING_MESSAGES,
    },
    State.AWAITING_NOTE_PARENT_SELECTION: {
        State.AWAITING_CONFIRMATION, State.AWAITING_NOTE_PARENT_TYPE,
        State.PROCESSING_AI, State.GATHERING_MESSAGES,
    },
    State.EXECUTING: {State.IDLE, State.AWAITING_CONFIRMATION},
}

# object slug -> noun in prompts, also the extracted data key for the picked name
NOTE_PARENT_NOUNS = {"companies": "company", "people": "person", "deals": "deal"}

ASSIGNEE_FIELDS = ("assignee_id", "assignee", "assignee_email")


def _transition(session: ConversationSession, new_state: State):
    """Move to ``new_state``; unexpected edges are logged, not blocked."""
    old_state = session.state
    if new_state != old_state and new_state not in TRANSITIONS.get(old_state, set()):
        logger.warning("Unexpected transition %s -> %s", old_state.value, new_state.value)
    session.state = new_state
    logger.info("Session %s/%s: %s -> %s", session.chat_id, session.user_id, old_state.value, new_state.value)


def _apply_assignee(action: SuggestedAction, assignee: ResolvedAssignee):
    action.extracted_data["assignee_id"] = assignee.id
    action.extracted_data["assignee"] = assignee.name
    action.extracted_data["assignee_email"] = assignee.email


def _merge_reclassified(previous: SuggestedAction, updated: SuggestedAction, field: str) -> SuggestedAction:
    """Drop the answered field's clarification; keep an already-resolved assignee."""
    updated.clarifications_needed = [c for c in updated.clarifications_needed if c.field != field]
    if field != "assignee":
        for key in ASSIGNEE_FIELDS:
            if key in previous.extracted_data and key not in updated.extracted_data:
                updated.extracted_data[key] = previous.extracted_data[key]
    return updated


class ConversationStateMachine:
    """Drives one conversation from forwarded messages to CRM writes.

    ``process`` runs the global handlers first (terminate, commands, the
    cancel button, forwarded messages) and otherwise dispatches to
    ``_handle_<state>_<event kind>``. Pairs without a handler are ignored.

    Collaborators:
        transport: send_message / edit_message / answer_callback
        classifier: classify / reclassify
        executor: execute
        schema: get() -> WorkspaceSchema
        resolver: search(object_slug, query); defaults to the executor's
    """

    def __init__(self, transport, classifier, executor, schema, resolver=None):
        self.transport = transport
        self.classifier = classifier
        self.executor = executor
        self.schema = schema
        self.resolver = resolver if resolver is not None else executor.resolver

    async def process(self, session: ConversationSession, event) -> None:
        session.updated_at = time.time()
        if getattr(event, "caller", None) is not None:
            session.caller_info = event.caller

        if event.kind == "terminate":
            session.terminated = True
            logger.info("Session %s/%s terminated: %s", session.chat_id, session.user_id, event.reason)
            return

        if event.kind == "callback":
            await self.transport.answer_callback(event.callback_id)
            if event.message_id is not None:
                session.last_message_id = event.message_id
            action, _ = parse_callback_data(event.data)
            if action == CallbackAction.CANCEL:
                await self._cancel(session, edit=True)
                return
            if action == CallbackAction.NOOP:
                return

        if event.kind == "command":
            handler = getattr(self, f"_command_{event.name}", None)
            if handler is None:
                await self._send(session, "Unknown command. Use /help to see what I can do.")
                return
            await handler(session, event)
            return

        if event.kind == "forwarded_message":
            await self._queue_message(session, event)
            return

        if session.state.has_suggestion and session.current_action is None:
            logger.warning("Session %s/%s in %s without a suggestion, resetting",
                           session.chat_id, session.user_id, session.state.value)
            session.reset()
            await self._show(session, "⌛ Session expired. Please start over.", edit=event.kind == "callback")
            return

        handler = getattr(self, f"_handle_{session.state.value}_{event.kind}", None)
        if handler is None:
            logger.info("No handler for %s in %s, ignoring", event.kind, session.state.value)
            return
        await handler(session, event)

    # ── Output ──

    async def _send(self, session: ConversationSession, text: str, keyboard: list | None = None) -> None:
        session.last_message_id = await self.transport.send_message(session.chat_id, text, keyboard)

    async def _show(self, session: ConversationSession, text: str, keyboard: list | None = None, edit: bool = False) -> None:
        """Edit the current status message when ``edit`` is set, else send a new one."""
        if edit and session.last_message_id is not None:
            await self.transport.edit_message(session.chat_id, session.last_message_id, text, keyboard)
        else:
            await self._send(session, text, keyboard)

    async def _show_suggestion(self, session: ConversationSession, edit: bool = False) -> None:
        action = session.current_action
        await self._show(
            session,
            format_suggested_action(action),
            confirmation_keyboard(bool(action.clarifications_needed), action.intent),
            edit=edit,
        )

    async def _show_clarification(self, session: ConversationSession, edit: bool = False) -> None:
        head = session.current_action.head_clarification
        await self._show(
            session,
            format_clarification(session.current_action),
            clarification_keyboard(head.options, head.field),
            edit=edit,
        )

    async def _show_assignees(self, session: ConversationSession, prefix: str = "", edit: bool = False) -> None:
        schema = await self.schema.get()
        text = "👤 Who should this task be assigned to?"
        if prefix:
            text = f"{prefix}\n\n{text}"
        await self._show(session, text, assignee_keyboard(schema.members, session.assignee_page), edit=edit)

    # ── Global handlers ──

    async def _queue_message(self, session: ConversationSession, event) -> None:
        session.message_queue.append(event.message)
        if session.state != State.GATHERING_MESSAGES:
            session.current_action = None
            session.editing_field = ""
            _transition(session, State.GATHERING_MESSAGES)
        await self._send(
            session,
            f"📥 Message queued ({len(session.message_queue)})\n\n"
            "Send more messages or use /done to process them.",
        )

    async def _cancel(self, session: ConversationSession, edit: bool = False) -> None:
        if session.state == State.IDLE and not session.message_queue:
            await self._show(session, "Nothing to cancel.", edit=edit)
            return
        session.reset()
        logger.info("Session %s/%s cancelled", session.chat_id, session.user_id)
        await self._show(session, "❌ Operation cancelled. Message queue cleared.", edit=edit)

    # ── Commands ──

    async def _command_start(self, session: ConversationSession, event) -> None:
        session.reset()
        session.started_at = time.time()
        await self._send(session, WELCOME_TEXT)

    async def _command_help(self, session: ConversationSession, event) -> None:
        await self._send(session, HELP_TEXT)

    async def _command_cancel(self, session: ConversationSession, event) -> None:
        await self._cancel(session)

    async def _command_clear(self, session: ConversationSession, event) -> None:
        count = len(session.message_queue)
        session.reset()
        if count:
            await self._send(session, f"🗑️ Cleared {count} message(s) from queue.")
        else:
            await self._send(session, "✨ Queue is already empty.")

    async def _command_session(self, session: ConversationSession, event) -> None:
        age_minutes = int((time.time() - session.started_at) // 60)
        current = intent_label(session.current_action.intent) if session.current_action else "none"
        await self._send(
            session,
            "📊 Session\n\n"
            f"State: {session.state.value}\n"
            f"Queued messages: {len(session.message_queue)}\n"
            f"Current action: {current}\n"
            f"Started: {age_minutes} min ago",
        )

    async def _command_done(self, session: ConversationSession, event) -> None:
        instruction = event.argument.strip()
        if not session.message_queue and not instruction:
            await self._send(session, "📭 No messages queued. Forward some messages first!")
            return
        if not instruction:
            _transition(session, State.AWAITING_INSTRUCTION)
            await self._send(
                session,
                f"✍️ What should I do with these {len(session.message_queue)} message(s)?\n\n"
                "For example: create a contact, add a task to follow up tomorrow.",
            )
            return
        await self._classify(session, instruction)

    # ── Classification ──

    async def _classify(self, session: ConversationSession, instruction: str) -> None:
        session.current_instruction = instruction
        session.current_action = None
        _transition(session, State.PROCESSING_AI)
        await self._send(session, "🤖 Analyzing...")
        try:
            schema = await self.schema.get()
            action = await self.classifier.classify(session.message_queue, instruction, schema)
        except (ClassifierError, CRMError) as e:
            logger.error("Classification failed for %s/%s: %s", session.chat_id, session.user_id, e)
            _transition(session, State.IDLE)
            await self._show(session, f"❌ AI analysis failed: {truncate(str(e))}", edit=True)
            return

        action = enforce_add_to_pattern(action, instruction)
        if action.intent == Intent.CREATE_TASK.value:
            self._auto_assign(session, action, schema)
        session.current_action = action
        _transition(session, State.AWAITING_CONFIRMATION)
        await self._show_suggestion(session, edit=True)

    def _auto_assign(self, session: ConversationSession, action: SuggestedAction, schema) -> None:
        if lookup_text(action.extracted_data, "assignee_id"):
            return
        requested = lookup_text(action.extracted_data, "assignee")
        assignee = resolve_assignee(requested, session.caller_info, schema.members, default_to_caller=True)
        if assignee is None:
            logger.info("Could not resolve assignee %r", requested)
            return
        _apply_assignee(action, assignee)

    async def _reclassify(self, session: ConversationSession, field: str, reply: str) -> SuggestedAction:
        previous = session.current_action
        schema = await self.schema.get()
        updated = await self.classifier.reclassify(previous, field, reply, schema)
        updated = _merge_reclassified(previous, updated, field)
        if updated.intent == Intent.CREATE_TASK.value:
            self._auto_assign(session, updated, schema)
        return updated

    # ── idle / gathering_messages ──

    async def _hint_done(self, session: ConversationSession, event) -> None:
        count = len(session.message_queue)
        if count:
            await self._send(
                session,
                f"📋 You have {count} message(s) in queue.\n\n"
                f"Use /done {event.text} to process them with this instruction.",
            )
        else:
            await self._send(
                session,
                "Forward me some messages, then send /done <instruction>.\n"
                "Use /help to see what I can do.",
            )

    _handle_idle_text = _hint_done
    _handle_gathering_messages_text = _hint_done

    # ── awaiting_instruction ──

    async def _handle_awaiting_instruction_text(self, session: ConversationSession, event) -> None:
        await self._classify(session, event.text)

    # ── awaiting_confirmation ──

    async def _handle_awaiting_confirmation_text(self, session: ConversationSession, event) -> None:
        await self._send(session, "Use the buttons above to confirm or edit, or /cancel to start over.")

    async def _handle_awaiting_confirmation_callback(self, session: ConversationSession, event: CallbackQueryEvent) -> None:
        action, payload = parse_callback_data(event.data)
        current = session.current_action

        if action == CallbackAction.CONFIRM:
            if current.intent == Intent.ADD_NOTE.value and not has_note_target(current):
                await self._ask_note_parent_type(session)
                return
            await self._execute(session)
        elif action == CallbackAction.CLARIFY:
            if current.head_clarification is None:
                await self._show_suggestion(session, edit=True)
                return
            _transition(session, State.AWAITING_CLARIFICATION)
            await self._show_clarification(session, edit=True)
        elif action == CallbackAction.EDIT:
            fields = editable_fields(current)
            if current.intent == Intent.CREATE_TASK.value and "assignee" not in fields:
                fields.append("assignee")
            await self._show(
                session,
                "✏️ Which field do you want to change?",
                edit_fields_keyboard(fields, {f: field_label(f) for f in fields}),
                edit=True,
            )
        elif action == CallbackAction.EDIT_FIELD:
            await self._start_edit(session, payload)
        elif action == CallbackAction.EDIT_DONE:
            await self._show_suggestion(session, edit=True)
        else:
            logger.info("Ignoring stale callback %r in awaiting_confirmation", event.data)

    async def _start_edit(self, session: ConversationSession, field: str) -> None:
        if field == "assignee":
            session.assignee_page = 0
            _transition(session, State.AWAITING_ASSIGNEE_SELECTION)
            await self._show_assignees(session, edit=True)
            return
        session.editing_field = "associated_company" if field == "company" else field
        _transition(session, State.AWAITING_EDIT_VALUE)
        current = lookup_text(session.current_action.extracted_data, field) or "not set"
        await self._show(
            session,
            f"✏️ Send the new value for {field_label(session.editing_field)}.\n\nCurrent: {current}",
            [[button("◀️ Back", CallbackAction.EDIT_DONE), button("❌ Cancel", CallbackAction.CANCEL)]],
            edit=True,
        )

    async def _execute(self, session: ConversationSession) -> None:
        action = session.current_action
        _transition(session, State.EXECUTING)
        await self._show(session, "⏳ Creating...", edit=True)

        title, content = format_messages_for_note(session.message_queue)
        if not action.note_title:
            action.note_title = title
        caller_email = await self._caller_email(session) if action.intent == Intent.CREATE_DEAL.value else ""
        result = await self.executor.execute(
            action, content, session.current_instruction or None, caller_email=caller_email
        )

        if result.success:
            session.reset()
            await self._show(session, format_result(result), edit=True)
            return
        _transition(session, State.AWAITING_CONFIRMATION)
        await self._show(
            session,
            f"{format_result(result)}\n\n{format_suggested_action(action)}",
            confirmation_keyboard(bool(action.clarifications_needed), action.intent),
            edit=True,
        )

    async def _caller_email(self, session: ConversationSession) -> str:
        """Email of the workspace member the caller is, or ""."""
        try:
            schema = await self.schema.get()
        except CRMError as e:
            logger.warning("No workspace members to resolve the caller: %s", e)
            return ""
        member = caller_member(session.caller_info, schema.members)
        return member.email if member else ""

    # ── awaiting_clarification ──

    async def _next_clarification(self, session: ConversationSession, edit: bool = True) -> None:
        if session.current_action.head_clarification is not None:
            await self._show_clarification(session, edit=edit)
            return
        _transition(session, State.AWAITING_CONFIRMATION)
        await self._show_suggestion(session, edit=edit)

    async def _resolve_locally(self, session: ConversationSession, field: str, answer: str, edit: bool) -> bool:
        """Answer target-type and record-selection questions without the classifier.

        Returns False when ``field`` is an ordinary question.
        """
        action = session.current_action
        if field == TARGET_TYPE_FIELD and is_target_type(answer):
            try:
                schema = await self.schema.get()
                session.current_action = await resolve_target_type(
                    action, answer, session.current_instruction, self.resolver, schema.lists
                )
            except CRMError as e:
                logger.error("Target search for %r failed: %s", answer, e)
                await self._send(session, f"❌ Search failed: {truncate(str(e))}")
                await self._show_clarification(session)
                return True
        elif field in SELECTION_FIELDS:
            session.current_action = resolve_selection(action, field, answer)
        else:
            return False
        await self._next_clarification(session, edit=edit)
        return True

    async def _handle_awaiting_clarification_callback(self, session: ConversationSession, event: CallbackQueryEvent) -> None:
        action, payload = parse_callback_data(event.data)
        current = session.current_action
        head = current.head_clarification

        if action == CallbackAction.CLARIFY_OPTION:
            index, _, field = payload.partition(":")
            if head is None or field != head.field:
                logger.info("Ignoring answer for %r, no longer pending", field)
                return
            try:
                option = head.options[int(index)]
            except (ValueError, IndexError):
                return
            if await self._resolve_locally(session, field, option, edit=True):
                return
            current.answer_head(option)
            await self._next_clarification(session)
        elif action == CallbackAction.CLARIFY_SKIP:
            if head is None or payload != head.field:
                return
            current.answer_head()
            await self._next_clarification(session)
        elif action == CallbackAction.CLARIFY_TYPE:
            await self._show(
                session,
                f"⌨️ Type your answer:\n\n{format_clarification(current)}",
                [[button("❌ Cancel", CallbackAction.CANCEL)]],
                edit=True,
            )

    async def _handle_awaiting_clarification_text(self, session: ConversationSession, event) -> None:
        head = session.current_action.head_clarification
        if head is None:
            _transition(session, State.AWAITING_CONFIRMATION)
            await self._show_suggestion(session)
            return
        if await self._resolve_locally(session, head.field, event.text, edit=False):
            return
        try:
            updated = await self._reclassify(session, head.field, event.text)
        except (ClassifierError, CRMError) as e:
            logger.error("Reclassify for %s failed: %s", head.field, e)
            await self._send(session, f"❌ Could not process your answer: {truncate(str(e))}")
            await self._show_clarification(session)
            return
        session.current_action = updated
        _transition(session, State.AWAITING_CONFIRMATION)
        await self._show_suggestion(session)

    # ── awaiting_edit_value ──

    async def _handle_awaiting_edit_value_text(self, session: ConversationSession, event) -> None:
        field = session.editing_field
        try:
            session.current_action = await self._reclassify(session, field, event.text)
        except (ClassifierError, CRMError) as e:
            logger.error("Edit of %s failed: %s", field, e)
            await self._send(session, f"❌ Could not apply the change: {truncate(str(e))}")
        session.editing_field = ""
        _transition(session, State.AWAITING_CONFIRMATION)
        await self._show_suggestion(session)

    async def _handle_awaiting_edit_value_callback(self, session: ConversationSession, event: CallbackQueryEvent) -> None:
        action, _ = parse_callback_data(event.data)
        if action == CallbackAction.EDIT_DONE:
            session.editing_field = ""
            _transition(session, State.AWAITING_CONFIRMATION)
            await self._show_suggestion(session, edit=True)

    # ── awaiting_assignee_selection / awaiting_assignee_input ──

    async def _handle_awaiting_assignee_selection_callback(self, session: ConversationSession, event: CallbackQueryEvent) -> None:
        action, payload = parse_callback_data(event.data)
        schema = await self.schema.get()

        if action == CallbackAction.ASSIGNEE:
            member = schema.member(payload)
            if member is None:
                await self._show_assignees(session, prefix="❌ That member is no longer available.", edit=True)
                return
            _apply_assignee(session.current_action, ResolvedAssignee.from_member(member))
            _transition(session, State.AWAITING_CONFIRMATION)
            await self._show_suggestion(session, edit=True)
        elif action in (CallbackAction.ASSIGNEE_PREV, CallbackAction.ASSIGNEE_NEXT):
            step = 1 if action == CallbackAction.ASSIGNEE_NEXT else -1
            last_page = assignee_page_count(schema.members) - 1
            session.assignee_page = min(max(session.assignee_page + step, 0), last_page)
            await self._show_assignees(session, edit=True)
        elif action == CallbackAction.ASSIGNEE_TYPE:
            _transition(session, State.AWAITING_ASSIGNEE_INPUT)
            await self._show(
                session,
                "✏️ Type the name or email of the assignee:",
                [[button("❌ Cancel", CallbackAction.CANCEL)]],
                edit=True,
            )
        elif action == CallbackAction.ASSIGNEE_SKIP:
            _transition(session, State.AWAITING_CONFIRMATION)
            await self._show_suggestion(session, edit=True)

    _handle_awaiting_assignee_input_callback = _handle_awaiting_assignee_selection_callback

    async def _handle_awaiting_assignee_input_text(self, session: ConversationSession, event) -> None:
        schema = await self.schema.get()
        assignee = resolve_assignee(event.text, session.caller_info, schema.members, default_to_caller=False)
        if assignee is None:
            session.assignee_page = 0
            _transition(session, State.AWAITING_ASSIGNEE_SELECTION)
            await self._show_assignees(session, prefix=f'❌ No team member matches "{event.text}".')
            return
        _apply_assignee(session.current_action, assignee)
        _transition(session, State.AWAITING_CONFIRMATION)
        await self._show_suggestion(session)

    _handle_awaiting_assignee_selection_text = _handle_awaiting_assignee_input_text

    # ── awaiting_note_parent_type / _search / _selection ──

    async def _ask_note_parent_type(self, session: ConversationSession, edit: bool = True) -> None:
        session.note_parent_object = ""
        session.note_parent_results = []
        _transition(session, State.AWAITING_NOTE_PARENT_TYPE)
        await self._show(session, "📝 Add note to which type of record?", note_parent_type_keyboard(), edit=edit)

    async def _handle_awaiting_note_parent_type_callback(self, session: ConversationSession, event: CallbackQueryEvent) -> None:
        action, payload = parse_callback_data(event.data)
        if action != CallbackAction.NOTE_PARENT_TYPE or payload not in NOTE_PARENT_NOUNS:
            logger.info("Ignoring callback %r while picking a note parent type", event.data)
            return
        session.note_parent_object = payload
        _transition(session, State.AWAITING_NOTE_PARENT_SEARCH)
        await self._show(
            session,
            f"🔍 Search for a {NOTE_PARENT_NOUNS[payload]}:",
            [[button("❌ Cancel", CallbackAction.CANCEL)]],
            edit=True,
        )

    async def _handle_awaiting_note_parent_type_text(self, session: ConversationSession, event) -> None:
        await self._send(session, "Pick a record type above, or /cancel.")

    async def _handle_awaiting_note_parent_search_text(self, session: ConversationSession, event) -> None:
        object_slug = session.note_parent_object or "companies"
        noun = NOTE_PARENT_NOUNS.get(object_slug, object_slug)
        try:
            results = await self.resolver.search(object_slug, event.text)
        except CRMError as e:
            logger.error("Note parent search in %s failed: %s", object_slug, e)
            await self._send(session, f"❌ Search failed: {truncate(str(e))}\n\nTry again or /cancel.")
            return
        if not results:
            await self._send(session, f'❌ No {noun} found matching "{event.text}".\n\nTry again or /cancel.')
            return
        session.note_parent_results = results[:5]
        _transition(session, State.AWAITING_NOTE_PARENT_SELECTION)
        await self._send(session, f"Found {len(results)} result(s):", note_parent_results_keyboard(results))

    # Typing again while results are shown is a new search.
    _handle_awaiting_note_parent_selection_text = _handle_awaiting_note_parent_search_text

    async def _handle_awaiting_note_parent_selection_callback(self, session: ConversationSession, event: CallbackQueryEvent) -> None:
        action, payload = parse_callback_data(event.data)
        if action == CallbackAction.NOTE_PARENT_SEARCH:
            await self._ask_note_parent_type(session)
            return
        if action != CallbackAction.NOTE_PARENT_SELECT:
            return
        chosen = next((r for r in session.note_parent_results if r.id == payload), None)
        if chosen is None:
            logger.info("Ignoring stale note parent %r", payload)
            return

        object_slug = session.note_parent_object or "companies"
        data = session.current_action.extracted_data
        data["parent_object"] = object_slug
        data["parent_record_id"] = chosen.id
        data[NOTE_PARENT_NOUNS.get(object_slug, "company")] = chosen.name
        session.note_parent_object = ""
        session.note_parent_results = []
        _transition(session, State.AWAITING_CONFIRMATION)
        await self._show_suggestion(session, edit=True)
