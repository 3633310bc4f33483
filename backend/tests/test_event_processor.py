import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

from sqlalchemy.exc import OperationalError

from dealbot.config.settings import settings
from dealbot.database.repositories.session_repository import SessionRepository
from dealbot.dialog.machine import DialogStateMachine, StepResult
from dealbot.messages.builders import text_message
from dealbot.messages.deal_cards import APOLOGY_TEXT
from dealbot.schemas.events import EventKind, InboundEvent
from dealbot.schemas.session import DialogStep, UserSession
from dealbot.services.event_processor import EventProcessor


def _event(message_id="wamid.1", text="hi"):
    return InboundEvent(store_id="store", user_id="6591234567", kind=EventKind.TEXT, text=text, message_id=message_id)


def _client():
    return SimpleNamespace(send=AsyncMock(return_value=True))


class ScriptedMachine:
    """Moves the session to deals_shown and replies with two fixed texts."""

    def __init__(self, persist=True):
        self.persist = persist
        self.calls = 0

    async def step(self, session, event):
        self.calls += 1
        if not self.persist:
            return StepResult(session=session, outbound=[text_message("try again")], persist=False)
        updated = session.model_copy(deep=True)
        updated.user_state.step = DialogStep.DEALS_SHOWN
        updated.add_user_entry(event.text)
        return StepResult(session=updated, outbound=[text_message("one"), text_message("two")])


def test_event_is_saved_then_sent(session_factory):
    client = _client()
    processor = EventProcessor(session_factory=session_factory, machine=ScriptedMachine(), client=client)

    sent = asyncio.run(processor.process(_event()))

    assert sent == [text_message("one"), text_message("two")]
    assert client.send.await_count == 2
    with session_factory() as db:
        stored = SessionRepository(db).load("store", "6591234567")
    assert stored.user_state.step == DialogStep.DEALS_SHOWN
    assert len(stored.sent_messages) == 2


def test_redelivered_event_sends_nothing_twice(session_factory):
    client = _client()
    processor = EventProcessor(session_factory=session_factory, machine=ScriptedMachine(), client=client)

    asyncio.run(processor.process(_event("wamid.same")))
    again = asyncio.run(processor.process(_event("wamid.same")))

    assert again == []
    assert client.send.await_count == 2


def test_rejected_input_is_sent_but_not_saved(session_factory):
    client = _client()
    processor = EventProcessor(session_factory=session_factory, machine=ScriptedMachine(persist=False), client=client)

    sent = asyncio.run(processor.process(_event()))

    assert sent == [text_message("try again")]
    with session_factory() as db:
        stored = SessionRepository(db).load("store", "6591234567")
    assert stored.user_state.step == DialogStep.WELCOME
    assert stored.sent_messages == []


def test_storage_failure_sends_apology_only():
    broken = MagicMock()
    broken.__enter__.return_value = broken
    broken.execute.side_effect = OperationalError("SELECT", {}, Exception("database is locked"))
    machine = ScriptedMachine()
    client = _client()
    processor = EventProcessor(session_factory=lambda: broken, machine=machine, client=client)

    sent = asyncio.run(processor.process(_event()))

    assert sent == [text_message(APOLOGY_TEXT)]
    assert machine.calls == 0
    client.send.assert_awaited_once_with("6591234567", text_message(APOLOGY_TEXT))


def test_events_for_one_user_run_one_at_a_time(session_factory):
    order = []

    class SlowMachine(ScriptedMachine):
        async def step(self, session, event):
            order.append(f"start {event.text}")
            await asyncio.sleep(0.01)
            order.append(f"end {event.text}")
            return await super().step(session, event)

    processor = EventProcessor(session_factory=session_factory, machine=SlowMachine(), client=_client())

    async def both():
        await asyncio.gather(
            processor.process(_event("wamid.a", "first")),
            processor.process(_event("wamid.b", "second")),
        )

    asyncio.run(both())

    assert order == ["start first", "end first", "start second", "end second"]
    with session_factory() as db:
        stored = SessionRepository(db).load("store", "6591234567")
    assert [e.content for e in stored.conversation] == ["first", "second"]


def test_redelivered_search_does_not_run_the_pipeline_again(session_factory, location, make_deal):
    saved = UserSession()
    saved.user_state.step = DialogStep.LOCATION_CONFIRMED
    saved.user_state.location = location
    with session_factory() as db:
        SessionRepository(db).save("store", "6591234567", saved)

    pipeline = SimpleNamespace(acquire=AsyncMock(side_effect=[
        [make_deal("Toast Box", deal_id="D1"), make_deal("Kaya Heaven", deal_id="D2")],
        [make_deal("Ya Kun", deal_id="D4")],
    ]))
    machine = DialogStateMachine(geo=MagicMock(), pipeline=pipeline, reminders=MagicMock(), chat=MagicMock())
    client = _client()
    processor = EventProcessor(session_factory=session_factory, machine=machine, client=client)
    search = InboundEvent(
        store_id="store", user_id="6591234567", kind=EventKind.INTERACTIVE,
        button_id="search_food_deals", message_id="wamid.SAME",
    )

    first = asyncio.run(processor.process(search))
    again = asyncio.run(processor.process(search))

    assert first
    assert again == []
    assert pipeline.acquire.await_count == 1
    assert client.send.await_count == len(first)
    with session_factory() as db:
        stored = SessionRepository(db).load("store", "6591234567")
    assert stored.shared_deal_ids == ["D1", "D2"]
    assert stored.processed_events == ["wamid.SAME"]


def test_events_without_message_id_are_always_handled(session_factory):
    machine = ScriptedMachine()
    processor = EventProcessor(session_factory=session_factory, machine=machine, client=_client())

    asyncio.run(processor.process(_event(message_id=None, text="hi")))
    asyncio.run(processor.process(_event(message_id=None, text="hi")))

    assert machine.calls == 2


def test_processed_message_ids_are_capped(session_factory, monkeypatch):
    monkeypatch.setattr(settings, "cap_processed_events", 3)
    processor = EventProcessor(session_factory=session_factory, machine=ScriptedMachine(), client=_client())

    for n in range(5):
        asyncio.run(processor.process(_event(f"wamid.{n}", f"msg {n}")))

    with session_factory() as db:
        stored = SessionRepository(db).load("store", "6591234567")
    assert stored.processed_events == ["wamid.2", "wamid.3", "wamid.4"]


def test_user_locks_are_released_after_processing(session_factory):
    processor = EventProcessor(session_factory=session_factory, machine=ScriptedMachine(), client=_client())

    async def many_users():
        await asyncio.gather(*(
            processor.process(InboundEvent(
                store_id="store", user_id=f"65900000{n:02d}", kind=EventKind.TEXT, text="hi", message_id=f"wamid.{n}",
            ))
            for n in range(20)
        ))
        await asyncio.gather(
            processor.process(_event("wamid.x", "first")),
            processor.process(_event("wamid.y", "second")),
        )

    asyncio.run(many_users())

    assert processor._locks == {}


def test_lock_is_released_when_storage_fails():
    broken = MagicMock()
    broken.__enter__.return_value = broken
    broken.execute.side_effect = OperationalError("SELECT", {}, Exception("database is locked"))
    processor = EventProcessor(session_factory=lambda: broken, machine=ScriptedMachine(), client=_client())

    asyncio.run(processor.process(_event()))

    assert processor._locks == {}
