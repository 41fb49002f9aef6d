from crmrelay.keyboards import (
    assignee_keyboard,
    assignee_page_count,
    callback_data,
    clarification_keyboard,
    confirmation_keyboard,
    edit_fields_keyboard,
    note_parent_results_keyboard,
    note_parent_type_keyboard,
    parse_callback_data,
)
from crmrelay.models import SearchResult
from tests.conftest import MEMBERS


def _data(keyboard):
    return [[b["callback_data"] for b in row] for row in keyboard]


class TestCallbackData:
    def test_round_trip(self):
        assert parse_callback_data(callback_data("edit_field", "email")) == ("edit_field", "email")
        assert parse_callback_data("confirm") == ("confirm", "")

    def test_payload_may_contain_colons(self):
        assert parse_callback_data("clarify_option:2:email") == ("clarify_option", "2:email")

    def test_fits_telegram_limit(self):
        for row in clarification_keyboard(["x" * 300] * 5, "associated_company"):
            for b in row:
                assert len(b["callback_data"].encode()) <= 64


class TestConfirmationKeyboard:
    def test_without_questions(self):
        assert _data(confirmation_keyboard(False, "create_company")) == [["confirm", "edit"], ["cancel"]]

    def test_with_questions(self):
        assert _data(confirmation_keyboard(True, "create_company"))[0] == ["confirm", "clarify"]

    def test_task_gets_company_and_assignee(self):
        assert _data(confirmation_keyboard(False, "create_task")) == [
            ["confirm", "edit"],
            ["edit_field:company"],
            ["edit_field:assignee"],
            ["cancel"],
        ]


class TestClarificationKeyboard:
    def test_options_capped_at_five(self):
        rows = _data(clarification_keyboard([f"opt{i}" for i in range(8)], "email"))
        assert rows[:5] == [[f"clarify_option:{i}:email"] for i in range(5)]
        assert rows[5] == ["clarify_type", "clarify_skip:email"]
        assert rows[6] == ["cancel"]

    def test_no_options(self):
        assert _data(clarification_keyboard(None, "phone")) == [["clarify_type", "clarify_skip:phone"], ["cancel"]]


class TestEditFieldsKeyboard:
    def test_two_per_row(self):
        keyboard = edit_fields_keyboard(["name", "email", "phone"], {"name": "Name"})
        assert _data(keyboard) == [
            ["edit_field:name", "edit_field:email"],
            ["edit_field:phone"],
            ["edit_done", "cancel"],
        ]
        assert keyboard[0][0]["text"] == "Name"
        assert keyboard[0][1]["text"] == "email"


class TestAssigneeKeyboard:
    def test_page_count(self):
        assert assignee_page_count(MEMBERS) == 2
        assert assignee_page_count([]) == 1

    def test_first_page(self):
        rows = _data(assignee_keyboard(MEMBERS, 0))
        assert rows[:5] == [[f"assignee:{m.id}"] for m in MEMBERS[:5]]
        assert rows[5] == ["noop", "assignee_next"]
        assert rows[6] == ["assignee_type"]
        assert rows[7] == ["assignee_skip", "cancel"]

    def test_last_page(self):
        keyboard = assignee_keyboard(MEMBERS, 1)
        rows = _data(keyboard)
        assert rows[:2] == [["assignee:m-finn"], ["assignee:m-gus"]]
        assert rows[2] == ["assignee_prev", "noop"]
        assert keyboard[2][1]["text"] == "2/2"

    def test_page_is_clamped(self):
        assert _data(assignee_keyboard(MEMBERS, 9))[0] == ["assignee:m-finn"]

    def test_single_page_has_no_nav(self):
        rows = _data(assignee_keyboard(MEMBERS[:2]))
        assert rows == [["assignee:m-anna"], ["assignee:m-bob"], ["assignee_type"], ["assignee_skip", "cancel"]]


class TestNoteParentKeyboards:
    def test_type_keyboard(self):
        assert _data(note_parent_type_keyboard()) == [
            ["note_parent_type:companies"], ["note_parent_type:people"], ["note_parent_type:deals"], ["cancel"],
        ]

    def test_results_keyboard_caps_hits_and_shows_extra(self):
        results = [SearchResult(id=f"c-{i}", name=f"Acme {i}", extra="acme.io" if i == 0 else "") for i in range(7)]
        keyboard = note_parent_results_keyboard(results)

        assert len(keyboard) == 6
        assert keyboard[0][0]["text"] == "Acme 0 (acme.io)"
        assert keyboard[1][0]["text"] == "Acme 1"
        assert _data(keyboard)[-1] == ["note_parent_search", "cancel"]

    def test_record_uuid_fits_telegram_limit(self):
        record_id = "8f14e45f-ceea-467f-a8f0-5c1b2d3e4f50"
        keyboard = note_parent_results_keyboard([SearchResult(id=record_id, name="Acme")])
        assert keyboard[0][0]["callback_data"] == f"note_parent:{record_id}"
        assert len(keyboard[0][0]["callback_data"].encode()) <= 64
