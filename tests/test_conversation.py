import asyncio

import pytest

from crmrelay.conversation import ConversationManager
from crmrelay.events import CommandEvent, ForwardedMessageEvent, TerminateEvent
from crmrelay.formatting import WELCOME_TEXT
from crmrelay.session import ForwardedMessage
from crmrelay.states import State
from crmrelay.store import SessionStore
from tests.conftest import FakeTransport


def forward(text):
    return ForwardedMessageEvent(message=ForwardedMessage(text=text))


class RecordingMachine:
    """Yields to the loop mid-event so overlapping handling would show up in ``log``."""

    def __init__(self, fail_on=None):
        self.transport = FakeTransport()
        self.log = []
        self.fail_on = fail_on

    async def process(self, session, event):
        if event.kind == "terminate":
            session.terminated = True
            return
        text = event.message.text
        self.log.append(f"start:{text}")
        await asyncio.sleep(0)
        if text == self.fail_on:
            raise RuntimeError("handler blew up")
        session.message_queue.append(event.message)
        session.state = State.GATHERING_MESSAGES
        self.log.append(f"end:{text}")


async def finish(worker):
    worker.put(TerminateEvent())
    await worker.task


class TestConversationManager:
    @pytest.mark.asyncio
    async def test_events_are_handled_one_at_a_time(self):
        machine = RecordingMachine()
        store = SessionStore()
        manager = ConversationManager(machine, store)

        worker = manager.dispatch(1, 2, forward("a"))
        assert manager.dispatch(1, 2, forward("b")) is worker
        await finish(worker)

        assert machine.log == ["start:a", "end:a", "start:b", "end:b"]
        session = await store.load(1, 2)
        assert [m.text for m in session.message_queue] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_separate_sessions_get_separate_workers(self):
        machine = RecordingMachine()
        manager = ConversationManager(machine, SessionStore())
        first = manager.dispatch(1, 2, forward("a"))
        second = manager.dispatch(1, 3, forward("b"))
        assert first is not second
        await finish(first)
        await finish(second)

    @pytest.mark.asyncio
    async def test_failure_resets_session_and_notifies(self):
        machine = RecordingMachine(fail_on="boom")
        store = SessionStore()
        manager = ConversationManager(machine, store)

        manager.dispatch(1, 2, forward("a"))
        worker = manager.dispatch(1, 2, forward("boom"))
        manager.dispatch(1, 2, forward("c"))
        await finish(worker)

        session = await store.load(1, 2)
        assert [m.text for m in session.message_queue] == ["c"]
        assert machine.transport.outputs[0][2].startswith("⚠️ Something went wrong.")

    @pytest.mark.asyncio
    async def test_start_supersedes_running_worker(self, machine, transport):
        store = SessionStore()
        manager = ConversationManager(machine, store)

        old = manager.dispatch(1, 2, forward("queued"))
        new = manager.dispatch(1, 2, CommandEvent(name="start"))
        assert new is not old
        await finish(new)

        assert old.task.done()
        session = await store.load(1, 2)
        assert session.message_queue == []
        assert session.state == State.IDLE
        assert [text for _, _, text, _ in transport.outputs] == [
            "📥 Message queued (1)\n\nSend more messages or use /done to process them.",
            WELCOME_TEXT,
        ]

    @pytest.mark.asyncio
    async def test_idle_worker_stops_and_is_replaced(self):
        machine = RecordingMachine()
        manager = ConversationManager(machine, SessionStore(), idle_timeout=0.01)

        worker = manager.dispatch(1, 2, forward("a"))
        await worker.task
        assert worker.closed
        with pytest.raises(RuntimeError):
            worker.put(forward("late"))

        replacement = manager.dispatch(1, 2, forward("b"))
        assert replacement is not worker
        await replacement.task
        assert machine.log[-1] == "end:b"
    @pytest.mark.asyncio
    async def test_closed_workers_are_pruned_on_dispatch(self):
        manager = ConversationManager(RecordingMachine(), SessionStore(), idle_timeout=0.01)
        first = manager.dispatch(1, 2, forward("a"))
        await first.task

        other = manager.dispatch(1, 3, forward("b"))
        assert list(manager._workers) == [(1, 3)]
        await finish(other)


class BlockingMachine:
    """Never finishes an event until ``release`` is set."""

    def __init__(self):
        self.transport = FakeTransport()
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def process(self, session, event):
        self.entered.set()
        await self.release.wait()


class TestShutdown:
    @pytest.mark.asyncio
    async def test_stops_worker_with_queued_event_without_idle_wait(self):
        machine = RecordingMachine()
        manager = ConversationManager(machine, SessionStore())
        worker = manager.dispatch(1, 2, forward("a"))
        manager.dispatch(1, 2, forward("b"))

        await asyncio.wait_for(manager.shutdown(), timeout=1.0)

        assert worker.task.done()
        assert not worker.task.cancelled()
        assert worker.closed
        assert manager._workers == {}

    @pytest.mark.asyncio
    async def test_stops_worker_between_events(self):
        machine = RecordingMachine()
        manager = ConversationManager(machine, SessionStore())
        worker = manager.dispatch(1, 2, forward("a"))
        await asyncio.sleep(0)

        await asyncio.wait_for(manager.shutdown(), timeout=1.0)

        assert worker.task.done()
        assert machine.log in ([], ["start:a", "end:a"])
        with pytest.raises(RuntimeError):
            worker.put(forward("late"))

    @pytest.mark.asyncio
    async def test_busy_worker_is_cancelled_after_grace(self):
        machine = BlockingMachine()
        manager = ConversationManager(machine, SessionStore(), shutdown_grace=0.01)
        worker = manager.dispatch(1, 2, forward("a"))
        await asyncio.wait_for(machine.entered.wait(), timeout=1.0)

        await asyncio.wait_for(manager.shutdown(), timeout=1.0)

        assert worker.task.cancelled()
        assert worker.closed
