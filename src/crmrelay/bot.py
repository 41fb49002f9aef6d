import logging
import os
from contextlib import asynccontextmanager

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from crmrelay.cache import TTLCache
from crmrelay.classifier import IntentClassifier
from crmrelay.config import Settings, validate_config
from crmrelay.conversation import ConversationManager
from crmrelay.crm import AttioClient
from crmrelay.events import parse_update
from crmrelay.executor import ActionExecutor
from crmrelay.schema import SchemaService
from crmrelay.state_machine import ConversationStateMachine
from crmrelay.store import SessionStore
from crmrelay.telegram import TelegramClient

load_dotenv()
validate_config()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = Settings.from_env()
    telegram = TelegramClient(settings.telegram_bot_token)
    attio = AttioClient(settings.attio_api_key)
    classifier = IntentClassifier(
        settings.openai_api_key,
        model=settings.openai_model,
        base_url=settings.openai_base_url,
    )
    schema = SchemaService(attio, TTLCache(default_ttl=settings.schema_cache_ttl), ttl=settings.schema_cache_ttl)
    machine = ConversationStateMachine(
        transport=telegram,
        classifier=classifier,
        executor=ActionExecutor(attio, schema=schema),
        schema=schema,
    )
    app.state.manager = ConversationManager(machine, SessionStore(idle_ttl=settings.session_idle_ttl))
    logger.info("crmrelay ready (model %s)", settings.openai_model)
    try:
        yield
    finally:
        await app.state.manager.shutdown()
        await telegram.close()
        await attio.close()
        await classifier.close()


app = FastAPI(title="crmrelay", lifespan=lifespan)


@app.get("/health")
async def health():
    return PlainTextResponse("ok")


@app.post("/webhook/telegram")
async def telegram_webhook(request: Request):
    """Hand the update to its session worker and acknowledge immediately."""
    try:
        update = await request.json()
    except ValueError:
        return JSONResponse({"ok": False, "error": "invalid JSON"}, status_code=400)

    parsed = parse_update(update) if isinstance(update, dict) else None
    if parsed is None:
        logger.debug("Ignoring update %s", update.get("update_id") if isinstance(update, dict) else "?")
        return {"ok": True}

    chat_id, user_id, event = parsed
    request.app.state.manager.dispatch(chat_id, user_id, event)
    return {"ok": True}


if __name__ == "__main__":
    port = int(os.getenv("PORT", "8080"))
    uvicorn.run("crmrelay.bot:app", host="0.0.0.0", port=port)
