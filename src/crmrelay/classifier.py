import json
import logging
import os

import httpx

from crmrelay.config import ConfigurationError
from crmrelay.models import SuggestedAction, WorkspaceSchema
from crmrelay.prompts import build_clarification_prompt, build_system_prompt, build_user_prompt
from crmrelay.session import ForwardedMessage

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_BASE_URL = "https://api.openai.com/v1"


class ClassifierError(Exception):
    """The model could not be reached or returned an unusable suggestion."""


class IntentClassifier:
    """Maps forwarded messages + instruction to a SuggestedAction.

    Talks to any OpenAI-compatible chat completions endpoint in JSON mode.
    Every response goes through ``SuggestedAction.from_dict``, so an intent
    outside the closed set surfaces as ClassifierError, never as an action.
    """

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_MODEL,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        if client is not None:
            self._client = client
        else:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={"Authorization": f"Bearer {api_key}"},
                timeout=timeout,
            )

    @classmethod
    def from_env(cls, client: httpx.AsyncClient | None = None) -> "IntentClassifier":
        api_key = os.getenv("OPENAI_API_KEY", "")
        if not api_key:
            raise ConfigurationError("OPENAI_API_KEY not configured")
        return cls(
            api_key=api_key,
            model=os.getenv("OPENAI_MODEL", DEFAULT_MODEL),
            base_url=os.getenv("OPENAI_BASE_URL", DEFAULT_BASE_URL),
            client=client,
        )

    async def close(self):
        await self._client.aclose()

    async def classify(
        self,
        messages: list[ForwardedMessage],
        instruction: str,
        schema: WorkspaceSchema,
    ) -> SuggestedAction:
        action = await self._complete(build_system_prompt(schema), build_user_prompt(messages, instruction))
        logger.info("Classified as %s (confidence %.2f)", action.intent, action.confidence)
        return action

    async def reclassify(
        self,
        previous: SuggestedAction,
        field: str,
        reply: str,
        schema: WorkspaceSchema,
    ) -> SuggestedAction:
        action = await self._complete(
            build_system_prompt(schema), build_clarification_prompt(previous, field, reply)
        )
        logger.info("Reclassified %s after answer for %s", action.intent, field)
        return action

    async def _complete(self, system_prompt: str, user_prompt: str) -> SuggestedAction:
        try:
            resp = await self._client.post(
                "/chat/completions",
                json={
                    "model": self.model,
                    "temperature": 0.1,
                    "response_format": {"type": "json_object"},
                    "messages": [
                        {"role": "system", "content": system_prompt},
                        {"role": "user", "content": user_prompt},
                    ],
                },
            )
            resp.raise_for_status()
            content = resp.json()["choices"][0]["message"]["content"]
        except httpx.HTTPError as e:
            logger.error("classification request failed: %s", e)
            raise ClassifierError(f"AI request failed: {e}") from e
        except (KeyError, IndexError, ValueError) as e:
            logger.error("classification response malformed: %s", e)
            raise ClassifierError("AI returned a malformed response") from e

        try:
            return SuggestedAction.from_dict(json.loads(content))
        except (ValueError, TypeError, AttributeError) as e:
            logger.error("classification payload rejected: %s", e)
            raise ClassifierError(f"AI returned an invalid suggestion: {e}") from e
