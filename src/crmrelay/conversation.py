"""Per-session sequential processing.

Every (chat, user) pair gets one ConversationWorker: an asyncio task that
drains its own event queue one event at a time, so an event is never handled
while an earlier one is still waiting on the classifier or the CRM. /start
supersedes the running worker; the old one is told to terminate and the new
one waits for it to finish before touching the session.
"""

import asyncio
import logging
from typing import Optional

from crmrelay.events import CommandEvent, TerminateEvent
from crmrelay.session import ConversationSession
from crmrelay.telegram import TelegramError

logger = logging.getLogger(__name__)

WORKER_IDLE_TIMEOUT = 600.0
SHUTDOWN_GRACE = 5.0

# Queued by stop(); never reaches the state machine.
_STOP = object()


class ConversationWorker:
    def __init__(
        self,
        chat_id: int,
        user_id: int,
        machine,
        store,
        idle_timeout: float = WORKER_IDLE_TIMEOUT,
        after: Optional[asyncio.Task] = None,
    ):
        self.chat_id = chat_id
        self.user_id = user_id
        self.machine = machine
        self.store = store
        self.idle_timeout = idle_timeout
        self.closed = False
        self._stopping = False
        self._after = after
        self._queue: asyncio.Queue = asyncio.Queue()
        self.task: Optional[asyncio.Task] = None

    def start(self) -> asyncio.Task:
        self.task = asyncio.create_task(self._run(), name=f"session-{self.chat_id}-{self.user_id}")
        return self.task

    def put(self, event) -> None:
        if self.closed or self._stopping:
            raise RuntimeError("worker is closed")
        self._queue.put_nowait(event)

    def stop(self) -> None:
        """Finish the event in hand, drop the rest and exit.

        Works through the queue rather than Task.cancel(), which
        asyncio.wait_for can swallow when an item is already queued.
        """
        if self.closed or self._stopping:
            return
        self._stopping = True
        self._queue.put_nowait(_STOP)

    async def _run(self) -> None:
        if self._after is not None:
            await asyncio.gather(self._after, return_exceptions=True)
        try:
            while True:
                try:
                    event = await asyncio.wait_for(self._queue.get(), timeout=self.idle_timeout)
                except asyncio.TimeoutError:
                    logger.debug("Worker %s/%s idle, stopping", self.chat_id, self.user_id)
                    return
                if event is _STOP or self._stopping:
                    logger.debug("Worker %s/%s stopped, %d event(s) dropped",
                                 self.chat_id, self.user_id, self._queue.qsize())
                    return
                if await self._handle(event):
                    return
        finally:
            self.closed = True

    async def _handle(self, event) -> bool:
        """Process one event; True when the worker should stop."""
        session = await self.store.load(self.chat_id, self.user_id)
        if session is None:
            session = ConversationSession(chat_id=self.chat_id, user_id=self.user_id)

        try:
            await self.machine.process(session, event)
        except Exception:
            logger.exception("Session %s/%s failed on %s, resetting", self.chat_id, self.user_id, event.kind)
            session.reset()
            await self._notify_failure()

        if session.terminated:
            return True
        await self.store.save(session)
        return False

    async def _notify_failure(self) -> None:
        try:
            await self.machine.transport.send_message(
                self.chat_id, "⚠️ Something went wrong. Your session was reset, please try again."
            )
        except TelegramError as e:
            logger.error("Could not report failure to %s: %s", self.chat_id, e)


class ConversationManager:
    """Routes events to the worker of their (chat, user) pair."""

    def __init__(
        self,
        machine,
        store,
        idle_timeout: float = WORKER_IDLE_TIMEOUT,
        shutdown_grace: float = SHUTDOWN_GRACE,
    ):
        self.machine = machine
        self.store = store
        self.idle_timeout = idle_timeout
        self.shutdown_grace = shutdown_grace
        self._workers: dict[tuple[int, int], ConversationWorker] = {}

    def _prune(self) -> None:
        for key in [k for k, w in self._workers.items() if w.closed]:
            del self._workers[key]

    def dispatch(self, chat_id: int, user_id: int, event) -> ConversationWorker:
        self._prune()
        key = (chat_id, user_id)
        worker = self._workers.get(key)

        after = None
        if worker is not None and isinstance(event, CommandEvent) and event.name == "start":
            logger.info("Superseding session %s/%s", chat_id, user_id)
            worker.put(TerminateEvent())
            after, worker = worker.task, None

        if worker is None:
            worker = ConversationWorker(chat_id, user_id, self.machine, self.store, self.idle_timeout, after=after)
            worker.start()
            self._workers[key] = worker
        worker.put(event)
        return worker

    async def shutdown(self) -> None:
        """Stop every worker; ones still busy after the grace period are cancelled."""
        tasks = [w.task for w in self._workers.values() if w.task is not None]
        for worker in self._workers.values():
            worker.stop()
        if tasks:
            _, pending = await asyncio.wait(tasks, timeout=self.shutdown_grace)
            for task in pending:
                logger.warning("Cancelling %s after %.0fs shutdown grace", task.get_name(), self.shutdown_grace)
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
        self._workers.clear()
