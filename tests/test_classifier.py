import json

import httpx
import pytest
import respx

from crmrelay.classifier import ClassifierError, IntentClassifier
from crmrelay.config import ConfigurationError
from crmrelay.models import SuggestedAction, WorkspaceMember, WorkspaceSchema
from crmrelay.session import ForwardedMessage

COMPLETIONS_URL = "https://api.openai.com/v1/chat/completions"
SCHEMA = WorkspaceSchema(members=[WorkspaceMember(id="m1", first_name="Anna", last_name="Berg", email="anna@example.com")])
MESSAGES = [ForwardedMessage(text="I'm Jane from Acme", chat_name="Jane Doe", sender_first_name="Jane")]


def _completion(payload):
    content = payload if isinstance(payload, str) else json.dumps(payload)
    return httpx.Response(200, json={"choices": [{"message": {"role": "assistant", "content": content}}]})


class TestClassify:
    @pytest.mark.asyncio
    async def test_returns_validated_action(self):
        with respx.mock:
            classifier = IntentClassifier(api_key="sk-test")
            route = respx.post(COMPLETIONS_URL).mock(return_value=_completion({
                "intent": "create_person",
                "confidence": 0.92,
                "extractedData": {"name": "Jane", "associated_company": "Acme"},
                "noteTitle": "Intro with Jane",
            }))
            action = await classifier.classify(MESSAGES, "add her", SCHEMA)

            assert action.intent == "create_person"
            assert action.extracted_data["associated_company"] == "Acme"
            request = route.calls[0].request
            assert request.headers["authorization"] == "Bearer sk-test"
            body = json.loads(request.content)
            assert body["model"] == "gpt-4o-mini"
            assert body["response_format"] == {"type": "json_object"}
            assert "Anna Berg (anna@example.com)" in body["messages"][0]["content"]
            assert "I'm Jane from Acme" in body["messages"][1]["content"]
            assert "add her" in body["messages"][1]["content"]

    @pytest.mark.asyncio
    async def test_unknown_intent_is_an_error(self):
        with respx.mock:
            classifier = IntentClassifier(api_key="sk-test")
            respx.post(COMPLETIONS_URL).mock(return_value=_completion({"intent": "drop_table"}))
            with pytest.raises(ClassifierError, match="invalid suggestion"):
                await classifier.classify(MESSAGES, "x", SCHEMA)

    @pytest.mark.asyncio
    async def test_non_json_content(self):
        with respx.mock:
            classifier = IntentClassifier(api_key="sk-test")
            respx.post(COMPLETIONS_URL).mock(return_value=_completion("sure! here you go"))
            with pytest.raises(ClassifierError):
                await classifier.classify(MESSAGES, "x", SCHEMA)

    @pytest.mark.asyncio
    async def test_missing_choices(self):
        with respx.mock:
            classifier = IntentClassifier(api_key="sk-test")
            respx.post(COMPLETIONS_URL).mock(return_value=httpx.Response(200, json={"choices": []}))
            with pytest.raises(ClassifierError, match="malformed"):
                await classifier.classify(MESSAGES, "x", SCHEMA)

    @pytest.mark.asyncio
    async def test_http_error(self):
        with respx.mock:
            classifier = IntentClassifier(api_key="sk-test")
            respx.post(COMPLETIONS_URL).mock(return_value=httpx.Response(429, json={"error": "rate limited"}))
            with pytest.raises(ClassifierError, match="AI request failed"):
                await classifier.classify(MESSAGES, "x", SCHEMA)

    @pytest.mark.asyncio
    async def test_custom_base_url(self):
        with respx.mock:
            classifier = IntentClassifier(api_key="k", model="local", base_url="http://llm.internal/v1/")
            route = respx.post("http://llm.internal/v1/chat/completions").mock(
                return_value=_completion({"intent": "add_note"})
            )
            await classifier.classify(MESSAGES, "x", SCHEMA)
            assert json.loads(route.calls[0].request.content)["model"] == "local"


class TestReclassify:
    @pytest.mark.asyncio
    async def test_sends_previous_and_answer(self):
        previous = SuggestedAction.from_dict({"intent": "create_person", "extractedData": {"name": "Jane"}})
        with respx.mock:
            classifier = IntentClassifier(api_key="sk-test")
            route = respx.post(COMPLETIONS_URL).mock(return_value=_completion({
                "intent": "create_person", "extractedData": {"name": "Jane", "email_addresses": ["jane@acme.io"]},
            }))
            action = await classifier.reclassify(previous, "email_addresses", "jane@acme.io", SCHEMA)

            assert action.extracted_data["email_addresses"] == ["jane@acme.io"]
            user_prompt = json.loads(route.calls[0].request.content)["messages"][1]["content"]
            assert '"email_addresses"' in user_prompt
            assert "jane@acme.io" in user_prompt
            assert '"name": "Jane"' in user_prompt


class TestFromEnv:
    def test_requires_key(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        with pytest.raises(ConfigurationError):
            IntentClassifier.from_env()

    def test_reads_model_and_base_url(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
        monkeypatch.setenv("OPENAI_MODEL", "gpt-test")
        monkeypatch.setenv("OPENAI_BASE_URL", "http://localhost:8000/v1")
        classifier = IntentClassifier.from_env()
        assert classifier.model == "gpt-test"
        assert classifier.base_url == "http://localhost:8000/v1"
