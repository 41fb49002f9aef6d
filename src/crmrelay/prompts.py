import json
from datetime import datetime

from crmrelay.models import ListDefinition, ObjectDefinition, SuggestedAction, WorkspaceSchema
from crmrelay.session import ForwardedMessage

INSTRUCTIONS = """You are an assistant that manages a CRM (Attio). Analyze forwarded Telegram messages and the user's instruction and decide which CRM action to take.

## Your Task
1. Determine the action intent.
2. Extract relevant data from the messages.
3. List missing required fields.
4. Flag ambiguities that need the user's clarification.

## Guidelines
ALL people, deals and tasks MUST be linked to a company.
- Infer the company from context (chat name, mentioned companies, sender info, email domain).
- If the company may not exist yet, add a prerequisiteAction with intent "create_company".
- If no company can be inferred, add a clarification asking which company to link.
- Always include "associated_company" in extractedData for people, deals and tasks.

- create_person: name, email_addresses, phone_numbers, job_title, associated_company.
- create_company: name, domains, primary_location, description.
- create_deal: name, value (as {"amount": number, "currency": "USD"}), owner, associated_company.
- create_task: content (required), deadline_at, assignee, associated_company.
  Pass deadline_at EXACTLY as the user said it ("next wednesday", "tomorrow", "2025-12-15"). Do NOT compute dates.
  assignee is the name or email of the team member, "me" when the user assigns it to themselves.
- add_to_list: targetList (list api slug) and the record (record_id, or associated_company / person by name).
- add_note: the parent record, as associated_company or person.

If several records could match, add a clarification with reason "multiple_matches" and the candidates as options.
If a required field is missing and cannot be inferred, add it to missingRequired and ask for it.

## Prerequisite Actions
When a dependent record must exist first ("create the company if it doesn't exist"), list it in prerequisiteActions.
Only create_company and create_person are allowed there. They run BEFORE the main action and their ids are used for linking.

## Note
The forwarded messages are ALWAYS saved as a note on the created or referenced record.
Write a descriptive "noteTitle" summarizing them, e.g. "Initial conversation with John Smith from Acme Corp".

## Response Format
Return ONLY a JSON object:
{
  "intent": "create_person" | "create_company" | "create_deal" | "create_task" | "add_note" | "add_to_list",
  "confidence": number between 0 and 1,
  "targetObject": object api slug,
  "targetList": list api slug or "",
  "extractedData": {field: value},
  "missingRequired": [field],
  "clarificationsNeeded": [{"field": str, "question": str, "options": [str], "reason": "missing" | "ambiguous" | "multiple_matches" | "not_found"}],
  "prerequisiteActions": [{"intent": "create_company" | "create_person", "extractedData": {field: value}, "reason": str}],
  "noteTitle": str,
  "reasoning": short explanation
}"""


def _format_object(obj: ObjectDefinition) -> str:
    lines = [f"{obj.singular_noun} ({obj.api_slug}):"]
    for attr in obj.attributes:
        if not attr.is_writable or attr.is_archived:
            continue
        line = f"  - {attr.api_slug} ({attr.type})"
        if attr.is_required:
            line += " [REQUIRED]"
        if attr.description:
            line += f": {attr.description}"
        lines.append(line)
    return "\n".join(lines)


def _format_list(lst: ListDefinition) -> str:
    return f"- {lst.name} ({lst.api_slug}): for {lst.parent_object} records"


def build_system_prompt(schema: WorkspaceSchema) -> str:
    objects = "\n\n".join(_format_object(o) for o in schema.objects) or "(none)"
    lists = "\n".join(_format_list(lst) for lst in schema.lists) or "(none)"
    members = "\n".join(f"- {m.full_name} ({m.email})" for m in schema.members) or "(none)"
    return (
        f"{INSTRUCTIONS}\n\n"
        f"## Available Objects and Their Fields\n\n{objects}\n\n"
        f"## Available Lists\n\n{lists}\n\n"
        f"## Team Members (for task assignment)\n\n{members}"
    )


def _format_message(index: int, message: ForwardedMessage) -> str:
    when = datetime.fromtimestamp(message.date).strftime("%Y-%m-%d %H:%M") if message.date else "unknown time"
    return f"[Message {index}] From: {message.sender} ({message.chat_name}) at {when}\n{message.text}"


def build_user_prompt(messages: list[ForwardedMessage], instruction: str) -> str:
    if messages:
        formatted = "\n\n".join(_format_message(i, m) for i, m in enumerate(messages, 1))
        section = f"## Forwarded Messages\n\n{formatted}"
    else:
        section = "## No forwarded messages provided"
    return (
        f"{section}\n\n"
        f"## User Instruction\n\n{instruction}\n\n"
        "Analyze the above and determine the appropriate CRM action."
    )


def build_clarification_prompt(previous: SuggestedAction, field: str, reply: str) -> str:
    """Ask the model to fold the user's answer for ``field`` into the previous suggestion."""
    return (
        "## Previous Suggestion\n\n"
        f"{json.dumps(previous.to_dict(), indent=2, default=str)}\n\n"
        "## User Answer\n\n"
        f'The user answered the question about "{field}" with:\n{reply}\n\n'
        "Return the complete updated suggestion in the same JSON format. "
        "Keep everything that was not affected by the answer and drop the clarification it resolves."
    )
