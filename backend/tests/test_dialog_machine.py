import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from dealbot.config.settings import settings
from dealbot.dialog.chat_mode import ChatMode
from dealbot.dialog.machine import DEAL_GONE_TEXT, DialogStateMachine
from dealbot.errors import FailureKind, ProviderResult
from dealbot.messages.builders import text_message
from dealbot.messages.deal_cards import (
    INVALID_BUTTON_TEXT,
    INVALID_LOCATION_TEXT,
    LOCATION_NOT_FOUND_TEXT,
    NEED_LOCATION_TEXT,
    NO_DEALS_TEXT,
    NO_MORE_DEALS_TEXT,
    OUT_OF_REGION_PREFIX,
)
from dealbot.schemas.events import EventKind, InboundEvent
from dealbot.schemas.location import LocationSource
from dealbot.schemas.session import DialogStep, UserSession
from dealbot.utils.clock import now_ms

MARINA_BAY = (1.2834, 103.8607)

ANSWER = text_message("🤖 Toast Box is the best value.")


class FakeGeo:
    def __init__(self, resolved=None, geocoded=None):
        self.resolve = AsyncMock(return_value=resolved)
        self.geocode = AsyncMock(return_value=geocoded)

    async def attach_weather(self, location):
        return location


@pytest.fixture
def deals(make_deal):
    return [
        make_deal("Toast Box", deal_id="D1", latitude=1.2838, longitude=103.8591, place_id="ChIJ-toastbox"),
        make_deal("Kaya Heaven", deal_id="D2"),
        make_deal("Ya Kun", deal_id="D3"),
    ]


@pytest.fixture
def rig(location):
    """A machine wired to fakes; tests reach in to script provider answers."""
    geo = FakeGeo(resolved=ProviderResult.success(location))
    pipeline = SimpleNamespace(acquire=AsyncMock(return_value=[]))
    reminders = MagicMock()
    reminders.schedule.return_value = "reminder-1"
    chat_service = SimpleNamespace(answer=AsyncMock(return_value=ANSWER))
    machine = DialogStateMachine(geo=geo, pipeline=pipeline, reminders=reminders, chat=ChatMode(chat=chat_service))
    return SimpleNamespace(machine=machine, geo=geo, pipeline=pipeline, reminders=reminders, chat=chat_service)


def _event(kind, **fields):
    return InboundEvent(store_id="store", user_id="6591234567", kind=kind, **fields)


def text(value):
    return _event(EventKind.TEXT, text=value)


def button(button_id):
    return _event(EventKind.INTERACTIVE, button_id=button_id)


def shared_location(lat, lng):
    return _event(EventKind.LOCATION, latitude=lat, longitude=lng)


def step(rig, session, event):
    return asyncio.run(rig.machine.step(session, event))


def _session(step_, location=None, deals=None, category=None, **extra):
    session = UserSession()
    session.user_state.step = step_
    session.user_state.location = location
    session.user_state.last_deals = deals
    session.user_state.category = category
    for name, value in extra.items():
        setattr(session.user_state, name, value)
    return session


def _buttons(message):
    return [b["reply"]["id"] for b in message["interactive"]["action"]["buttons"]]


def _texts(outbound):
    return [m["text"]["body"] for m in outbound if m["type"] == "text"]


# ── Welcome & location ────────────────────────────────────

def test_first_message_gets_welcome_card(rig):
    result = step(rig, UserSession(), text("hi"))

    assert result.persist
    assert result.session.user_state.step == DialogStep.WELCOME
    assert _buttons(result.outbound[0]) == ["share_location_prompt", "how_it_works", "about"]
    assert [e.role for e in result.session.conversation] == ["user", "assistant"]
    assert result.session.conversation[0].content == "hi"


def test_share_location_prompt_moves_to_awaiting_location(rig):
    result = step(rig, UserSession(), button("share_location_prompt"))

    assert result.session.user_state.step == DialogStep.AWAITING_LOCATION
    assert result.session.conversation[0].content == "[Selected: share_location_prompt]"


def test_shared_location_is_confirmed(rig):
    session = _session(DialogStep.AWAITING_LOCATION)
    session.shared_deal_ids = ["OLD"]

    result = step(rig, session, shared_location(*MARINA_BAY))

    state = result.session.user_state
    assert state.step == DialogStep.LOCATION_CONFIRMED
    assert state.location.display_name == "Marina Bay"
    assert result.session.shared_deal_ids == []
    assert result.outbound[0]["interactive"]["header"]["text"] == "📍 Marina Bay"
    rig.geo.resolve.assert_awaited_once_with(*MARINA_BAY)


def test_location_without_geocoding_gets_generic_label(rig):
    rig.geo.resolve.return_value = ProviderResult.failure(FailureKind.UNAVAILABLE, "timeout")

    result = step(rig, UserSession(), shared_location(*MARINA_BAY))

    assert result.session.user_state.location.display_name == "Your Location"
    assert result.session.user_state.step == DialogStep.LOCATION_CONFIRMED


def test_location_outside_region_is_rejected_without_state_change(rig):
    session = _session(DialogStep.AWAITING_LOCATION)

    result = step(rig, session, shared_location(3.139, 101.6869))

    assert not result.persist
    assert result.session is session
    assert _texts(result.outbound)[0].startswith(OUT_OF_REGION_PREFIX)
    rig.geo.resolve.assert_not_awaited()


def test_location_resolved_to_other_country_is_rejected(rig):
    rig.geo.resolve.return_value = ProviderResult.failure(FailureKind.OUT_OF_REGION, "Malaysia")

    result = step(rig, UserSession(), shared_location(1.46, 103.76))

    assert not result.persist
    assert "Malaysia" in _texts(result.outbound)[0]


def test_malformed_coordinates_are_invalid(rig):
    result = step(rig, UserSession(), shared_location(None, 103.86))

    assert not result.persist
    assert _texts(result.outbound) == [INVALID_LOCATION_TEXT]
    assert result.session.conversation == []


def test_typed_place_name_is_geocoded(rig, location):
    rig.geo.geocode.return_value = ProviderResult.success(
        location.model_copy(update={"source": LocationSource.GEOCODED_SEARCH})
    )

    result = step(rig, _session(DialogStep.AWAITING_LOCATION), text("Marina Bay Sands"))

    assert result.session.user_state.step == DialogStep.LOCATION_CONFIRMED
    rig.geo.geocode.assert_awaited_once_with("Marina Bay Sands")


def test_unknown_place_name_asks_again(rig):
    rig.geo.geocode.return_value = ProviderResult.failure(FailureKind.UNRESOLVABLE, "ZERO_RESULTS")

    result = step(rig, _session(DialogStep.AWAITING_LOCATION), text("Atlantis"))

    assert result.session.user_state.step == DialogStep.AWAITING_LOCATION
    assert _texts(result.outbound) == [LOCATION_NOT_FOUND_TEXT]


# ── Searching ─────────────────────────────────────────────

def test_category_button_shows_deals(rig, location, deals):
    rig.pipeline.acquire.return_value = deals
    session = _session(DialogStep.LOCATION_CONFIRMED, location=location)

    result = step(rig, session, button("search_food_deals"))

    state = result.session.user_state
    assert state.step == DialogStep.DEALS_SHOWN
    assert state.category == "food"
    assert [d.deal_id for d in state.last_deals] == ["D1", "D2", "D3"]
    assert result.session.shared_deal_ids == ["D1", "D2", "D3"]
    assert len(result.outbound) == 4
    assert _buttons(result.outbound[-1]) == ["more_deals", "share_deals", "new_search"]
    rig.pipeline.acquire.assert_awaited_once_with(
        location, "food", exclude_deal_ids=[], limit=settings.deals_per_search,
    )


def test_typed_category_searches(rig, location, deals):
    rig.pipeline.acquire.return_value = deals

    result = step(rig, _session(DialogStep.LOCATION_CONFIRMED, location=location), text("any clothes deals?"))

    assert result.session.user_state.category == "fashion"
    assert result.session.user_state.step == DialogStep.DEALS_SHOWN


def test_search_without_location_asks_for_one(rig):
    result = step(rig, UserSession(), button("search_food_deals"))

    assert result.session.user_state.step == DialogStep.AWAITING_LOCATION
    assert _texts(result.outbound) == [NEED_LOCATION_TEXT]
    rig.pipeline.acquire.assert_not_awaited()


def test_empty_search_returns_to_category_choice(rig, location):
    result = step(rig, _session(DialogStep.LOCATION_CONFIRMED, location=location), button("search_events_deals"))

    assert result.session.user_state.step == DialogStep.LOCATION_CONFIRMED
    assert _texts(result.outbound) == [NO_DEALS_TEXT]


def test_more_deals_excludes_everything_shown(rig, location, deals, make_deal):
    fresh = [make_deal("Old Chang Kee", deal_id="D4")]
    rig.pipeline.acquire.return_value = fresh
    session = _session(DialogStep.DEALS_SHOWN, location=location, deals=deals, category="food")
    session.shared_deal_ids = ["D1", "D2", "D3"]

    result = step(rig, session, button("more_deals"))

    assert rig.pipeline.acquire.await_args.kwargs["exclude_deal_ids"] == ["D1", "D2", "D3"]
    assert result.session.shared_deal_ids == ["D1", "D2", "D3", "D4"]
    assert [d.deal_id for d in result.session.user_state.last_deals] == ["D4"]


def test_more_deals_with_nothing_new_keeps_current_deals(rig, location, deals):
    session = _session(DialogStep.DEALS_SHOWN, location=location, deals=deals, category="food")

    result = step(rig, session, button("more_deals"))

    assert result.session.user_state.step == DialogStep.DEALS_SHOWN
    assert result.session.user_state.last_deals == deals
    assert _texts(result.outbound) == [NO_MORE_DEALS_TEXT]


def test_new_search_offers_category_list(rig, location, deals):
    session = _session(DialogStep.DEALS_SHOWN, location=location, deals=deals, category="food")

    result = step(rig, session, button("new_search"))

    state = result.session.user_state
    assert state.step == DialogStep.LOCATION_CONFIRMED
    assert state.last_deals is None
    assert state.category is None
    assert result.outbound[0]["interactive"]["type"] == "list"


# ── Deal actions ──────────────────────────────────────────

def test_directions_for_matched_deal_sends_pin(rig, location, deals):
    session = _session(DialogStep.DEALS_SHOWN, location=location, deals=deals, category="food")

    result = step(rig, session, button("get_directions_0"))

    assert result.outbound[0]["type"] == "location"
    assert result.outbound[0]["location"]["name"] == "Toast Box"


def test_share_single_and_all_deals(rig, location, deals):
    session = _session(DialogStep.DEALS_SHOWN, location=location, deals=deals, category="food")

    single = step(rig, session, button("share_deal_1"))
    everything = step(rig, session, button("share_deals"))

    assert "Kaya Heaven" in _texts(single.outbound)[0]
    body = _texts(everything.outbound)[0]
    assert "1. *Toast Box*" in body and "3. *Ya Kun*" in body


def test_action_on_deal_no_longer_shown_is_invalid(rig, location, deals):
    session = _session(DialogStep.DEALS_SHOWN, location=location, deals=deals, category="food")

    result = step(rig, session, button("share_deal_4"))

    assert not result.persist
    assert _texts(result.outbound) == [DEAL_GONE_TEXT]


def test_unknown_button_is_invalid_and_not_persisted(rig, location, deals):
    session = _session(DialogStep.DEALS_SHOWN, location=location, deals=deals, category="food")

    result = step(rig, session, button("launch_rocket"))

    assert not result.persist
    assert result.session is session
    assert _texts(result.outbound) == [INVALID_BUTTON_TEXT]


# ── Reminders ─────────────────────────────────────────────

def test_reminder_flow_with_button(rig, location, deals):
    session = _session(DialogStep.DEALS_SHOWN, location=location, deals=deals, category="food")

    asked = step(rig, session, button("set_reminder_1"))
    assert asked.session.user_state.step == DialogStep.AWAITING_REMINDER_TIME
    assert asked.session.user_state.pending_reminder_deal.deal_id == "D2"
    assert _buttons(asked.outbound[0]) == ["reminder_1hour", "reminder_2hours", "reminder_4hours"]

    done = step(rig, asked.session, button("reminder_2hours"))

    assert done.session.user_state.step == DialogStep.DEALS_SHOWN
    assert done.session.user_state.pending_reminder_deal is None
    store_id, user_id, deal, _ = rig.reminders.schedule.call_args.args
    assert (store_id, user_id, deal.deal_id) == ("store", "6591234567", "D2")
    assert _texts(done.outbound)[0].startswith("✅ *Reminder set!*")


def test_reminder_time_typed(rig, location, deals):
    session = _session(DialogStep.AWAITING_REMINDER_TIME, location=location, deals=deals,
                       category="food", pending_reminder_deal=deals[0])

    bad = step(rig, session, text("sometime later"))
    good = step(rig, session, text("in 30 minutes"))

    assert bad.session.user_state.step == DialogStep.AWAITING_REMINDER_TIME
    assert good.session.user_state.step == DialogStep.DEALS_SHOWN
    assert rig.reminders.schedule.call_count == 1


# ── Restart & inactivity ──────────────────────────────────

def test_restart_keyword_resets_everything(rig, location, deals):
    session = _session(DialogStep.DEALS_SHOWN, location=location, deals=deals, category="food")
    session.add_user_entry("earlier")

    result = step(rig, session, text("menu"))

    state = result.session.user_state
    assert state.step == DialogStep.WELCOME
    assert state.location is None
    assert state.last_deals is None
    assert result.session.conversation == []


def test_greeting_after_inactivity_returns_to_welcome(rig, location, deals):
    session = _session(DialogStep.DEALS_SHOWN, location=location, deals=deals, category="food")
    session.timestamp = now_ms() - 31 * 60_000

    result = step(rig, session, text("hello"))

    assert result.session.user_state.step == DialogStep.WELCOME
    assert result.session.user_state.location is None
    rig.chat.answer.assert_not_awaited()


def test_input_session_is_never_mutated(rig, location, deals):
    rig.pipeline.acquire.return_value = deals
    session = _session(DialogStep.LOCATION_CONFIRMED, location=location)
    before = session.model_dump()

    step(rig, session, button("search_food_deals"))

    assert session.model_dump() == before


# ── Chat follow-up ────────────────────────────────────────

def test_question_after_deals_enters_chat(rig, location, deals):
    session = _session(DialogStep.DEALS_SHOWN, location=location, deals=deals, category="food")

    result = step(rig, session, text("which one is cheapest?"))

    state = result.session.user_state
    assert state.step == DialogStep.CHAT_MODE
    assert state.chat_interaction_count == 1
    assert [d.deal_id for d in state.chat_context.deals] == ["D1", "D2", "D3"]
    assert result.outbound == [ANSWER]
    context, _, question = rig.chat.answer.await_args.args
    assert context.location_label == "Marina Bay"
    assert question == "which one is cheapest?"


def test_chat_directions_pick_the_named_deal(rig, location, deals):
    session = _session(DialogStep.DEALS_SHOWN, location=location, deals=deals, category="food")

    result = step(rig, session, text("where is the second one?"))

    assert "Kaya Heaven" in _texts(result.outbound)[0]
    rig.chat.answer.assert_not_awaited()


def test_chat_exit_and_new_location(rig, location, deals):
    session = _session(DialogStep.DEALS_SHOWN, location=location, deals=deals, category="food")
    in_chat = step(rig, session, text("what time do they open?")).session

    exited = step(rig, in_chat, text("exit"))
    moved = step(rig, in_chat, text("different area please"))

    assert exited.session.user_state.step == DialogStep.DEALS_SHOWN
    assert exited.session.user_state.chat_context is None
    assert moved.session.user_state.step == DialogStep.AWAITING_LOCATION
    assert moved.session.user_state.location is None


def test_chat_more_deals_stays_in_chat(rig, location, deals, make_deal):
    rig.pipeline.acquire.return_value = [make_deal("Old Chang Kee", deal_id="D4")]
    session = _session(DialogStep.DEALS_SHOWN, location=location, deals=deals, category="food")
    in_chat = step(rig, session, text("what time do they open?")).session

    result = step(rig, in_chat, text("show more please"))

    state = result.session.user_state
    assert state.step == DialogStep.CHAT_MODE
    assert [d.deal_id for d in state.chat_context.deals] == ["D1", "D2", "D3", "D4"]
    assert [d.deal_id for d in state.last_deals] == ["D4"]


def test_chat_quota_restarts_session(rig, location, deals):
    session = _session(DialogStep.DEALS_SHOWN, location=location, deals=deals, category="food")
    for _ in range(settings.chat_turn_quota):
        session = step(rig, session, text("tell me more")).session
    assert session.user_state.chat_interaction_count == settings.chat_turn_quota

    result = step(rig, session, text("and another thing"))

    assert result.session.user_state.step == DialogStep.WELCOME
    assert result.session.conversation == []
    assert _texts(result.outbound)[0].startswith("🔄 *Chat Session Restarted*")
    assert rig.chat.answer.await_count == settings.chat_turn_quota
