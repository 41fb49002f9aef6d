from enum import Enum

# States that only make sense while a suggestion is on screen.
SUGGESTION_STATES = {
    "awaiting_confirmation", "awaiting_clarification", "awaiting_edit_value",
    "awaiting_assignee_selection", "awaiting_assignee_input",
    "awaiting_note_parent_type", "awaiting_note_parent_search", "awaiting_note_parent_selection",
}


class State(Enum):
    IDLE = "idle"
    GATHERING_MESSAGES = "gathering_messages"
    AWAITING_INSTRUCTION = "awaiting_instruction"
    PROCESSING_AI = "processing_ai"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    AWAITING_CLARIFICATION = "awaiting_clarification"
    AWAITING_EDIT_VALUE = "awaiting_edit_value"
    AWAITING_ASSIGNEE_SELECTION = "awaiting_assignee_selection"
    AWAITING_ASSIGNEE_INPUT = "awaiting_assignee_input"
    AWAITING_NOTE_PARENT_TYPE = "awaiting_note_parent_type"
    AWAITING_NOTE_PARENT_SEARCH = "awaiting_note_parent_search"
    AWAITING_NOTE_PARENT_SELECTION = "awaiting_note_parent_selection"
    EXECUTING = "executing"

    @property
    def has_suggestion(self) -> bool:
        return self.value in SUGGESTION_STATES
