"""
Dialog State Machine
────────────────────
``step(session, event)`` is the one entry point: it takes the stored session
and one inbound event and returns the next session plus the messages to send.

The input session is never mutated. Transitions work on a deep copy; when a
transition rejects the input (InvalidInput / OutOfRegion) the original session
comes back untouched with ``persist=False``. StorageUnavailable is not caught
here: the caller owns the apology and must not save.

States: welcome → awaiting_location → location_confirmed → (searching) →
deals_shown ⇄ awaiting_reminder_time / chat_mode, with restart keywords
returning to welcome from anywhere.
"""
import re
from dataclasses import dataclass, field
from datetime import timedelta

from dealbot.config.settings import settings
from dealbot.dialog.buttons import Button, parse_button
from dealbot.dialog.chat_mode import ChatMode, chat_mode
from dealbot.errors import FailureKind, InvalidInput, OutOfRegion
from dealbot.messages.builders import clip, message_preview, text_message
from dealbot.messages.deal_cards import (
    INVALID_LOCATION_TEXT,
    LOCATION_NOT_FOUND_TEXT,
    NEED_LOCATION_TEXT,
    NO_DEALS_TEXT,
    NO_MORE_DEALS_TEXT,
    about_text,
    category_list_message,
    category_prompt_card,
    chat_restart_messages,
    deal_messages,
    directions_message,
    how_it_works_text,
    location_confirmation_card,
    out_of_region_text,
    reminder_confirmation_text,
    reminder_prompt_card,
    reminder_time_invalid_text,
    share_deal_text,
    share_deals_text,
    share_location_text,
    welcome_card,
)
from dealbot.schemas.deal import Deal
from dealbot.schemas.events import EventKind, InboundEvent
from dealbot.schemas.location import Location, LocationSource
from dealbot.schemas.session import DialogStep, UserSession
from dealbot.services.deal_pipeline import DealPipeline, deal_pipeline
from dealbot.services.geo_weather_service import GeoWeatherService, geo_weather_service
from dealbot.services.reminder_service import ReminderService, parse_reminder_time, reminder_service
from dealbot.utils.clock import local_now, now_ms
from dealbot.utils.geo import in_region, valid_coordinates
from dealbot.utils.keywords import category_from_text, intent_phrases
from dealbot.utils.logger import get_logger

logger = get_logger(__name__)

CONVERSATION_ENTRY_MAX = 500
DEAL_GONE_TEXT = "🤔 That deal is no longer on screen. Tap *More Deals* or start a *New Search* to see fresh ones."
NOTHING_TO_SHARE_TEXT = "🤔 There are no deals to share yet. Share your location and pick a category first!"
NO_PENDING_REMINDER_TEXT = "🤔 Please tap *Set Reminder* on a deal first, then choose a time."


@dataclass
class StepResult:
    session: UserSession
    outbound: list[dict]
    persist: bool = True


@dataclass
class _Turn:
    session: UserSession
    event: InboundEvent
    outbound: list[dict] = field(default_factory=list)
    log_conversation: bool = True

    @property
    def state(self):
        return self.session.user_state


def is_restart(text: str) -> bool:
    lowered = text.lower().strip()
    return lowered in intent_phrases("restart_exact") or any(p in lowered for p in intent_phrases("restart_phrases"))


def is_greeting(text: str) -> bool:
    cleaned = re.sub(r"[^\w\s]", "", text.lower()).strip()
    return any(cleaned == g or cleaned.startswith(g + " ") for g in intent_phrases("greetings"))


def _user_entry(event: InboundEvent) -> str:
    if event.kind == EventKind.LOCATION:
        return f"[Shared location: {event.latitude}, {event.longitude}]"
    if event.kind == EventKind.INTERACTIVE:
        return f"[Selected: {event.button_id}]"
    return event.text or ""


class DialogStateMachine:
    def __init__(
        self,
        geo: GeoWeatherService = geo_weather_service,
        pipeline: DealPipeline = deal_pipeline,
        reminders: ReminderService = reminder_service,
        chat: ChatMode = chat_mode,
    ):
        self.geo = geo
        self.pipeline = pipeline
        self.reminders = reminders
        self.chat = chat

    async def step(self, session: UserSession, event: InboundEvent) -> StepResult:
        turn = _Turn(session=session.model_copy(deep=True), event=event)
        try:
            if event.kind == EventKind.LOCATION:
                await self._on_location(turn)
            elif event.kind == EventKind.INTERACTIVE:
                await self._on_button(turn, parse_button(event.button_id))
            else:
                await self._on_text(turn, (event.text or "").strip())
        except InvalidInput as e:
            logger.info("step — invalid input from %s: %s", event.user_id, e)
            return StepResult(session=session, outbound=[text_message(e.reprompt)], persist=False)
        except OutOfRegion as e:
            logger.info("step — out-of-region location from %s: %s", event.user_id, e.message)
            return StepResult(session=session, outbound=[out_of_region_text(e.country)], persist=False)

        if turn.log_conversation:
            turn.session.add_user_entry(_user_entry(event))
            for message in turn.outbound:
                turn.session.add_assistant_entry(clip(message_preview(message), CONVERSATION_ENTRY_MAX))

        logger.info(
            "step — user=%s event=%s step %s → %s, %d outbound",
            event.user_id, event.kind.value, session.user_state.step.value,
            turn.state.step.value, len(turn.outbound),
        )
        return StepResult(session=turn.session, outbound=turn.outbound)

    # ── Resets ────────────────────────────────────────────────

    def _clear_search(self, turn: _Turn) -> None:
        state = turn.state
        state.category = None
        state.last_deals = None
        state.chat_context = None
        state.pending_reminder_deal = None
        state.chat_interaction_count = 0

    def _restart(self, turn: _Turn, messages: list[dict]) -> list[dict]:
        """Back to welcome with an empty conversation; nothing of this turn is logged."""
        self._clear_search(turn)
        turn.state.location = None
        turn.state.step = DialogStep.WELCOME
        turn.session.conversation = []
        turn.log_conversation = False
        return messages

    # ── Location ──────────────────────────────────────────────

    async def _on_location(self, turn: _Turn) -> None:
        lat, lng = turn.event.latitude, turn.event.longitude
        if not valid_coordinates(lat, lng):
            raise InvalidInput(INVALID_LOCATION_TEXT, f"invalid coordinates {lat!r}, {lng!r}")
        lat, lng = float(lat), float(lng)
        if not in_region(lat, lng):
            raise OutOfRegion(f"{lat},{lng} is outside the {settings.region} bounding box")

        resolved = await self.geo.resolve(lat, lng)
        if resolved.ok:
            location = resolved.value
        elif resolved.kind == FailureKind.OUT_OF_REGION:
            raise OutOfRegion(f"{lat},{lng} resolved outside {settings.region}", resolved.detail)
        else:
            logger.info("_on_location — geocoding %s, using a generic label", resolved.kind.value)
            location = Location(latitude=lat, longitude=lng, display_name="Your Location", area=settings.region_name)

        await self._confirm_location(turn, location)

    async def _confirm_location(self, turn: _Turn, location: Location) -> None:
        location = await self.geo.attach_weather(location)
        self._clear_search(turn)
        turn.state.location = location
        turn.session.shared_deal_ids = []
        turn.state.step = DialogStep.LOCATION_CONFIRMED
        turn.outbound.append(location_confirmation_card(location))

    async def _on_place_name(self, turn: _Turn, text: str) -> None:
        found = await self.geo.geocode(text)
        if found.ok:
            await self._confirm_location(turn, found.value)
            return
        if found.kind == FailureKind.OUT_OF_REGION:
            raise OutOfRegion(f"{text!r} is outside {settings.region}", found.detail)
        turn.outbound.append(text_message(LOCATION_NOT_FOUND_TEXT))

    # ── Search ────────────────────────────────────────────────

    async def _search(self, turn: _Turn, category: str) -> list[Deal]:
        state = turn.state
        state.category = category
        state.step = DialogStep.SEARCHING
        return await self.pipeline.acquire(
            state.location,
            category,
            exclude_deal_ids=list(turn.session.shared_deal_ids),
            limit=settings.deals_per_search,
        )

    def _show(self, turn: _Turn, deals: list[Deal]) -> list[dict]:
        state = turn.state
        state.last_deals = deals
        turn.session.add_shared_deal_ids(deals, settings.cap_shared_deal_ids)
        state.step = DialogStep.DEALS_SHOWN
        return deal_messages(deals, state.category)

    async def _new_search(self, turn: _Turn, category: str) -> None:
        if turn.state.location is None:
            turn.state.step = DialogStep.AWAITING_LOCATION
            turn.outbound.append(text_message(NEED_LOCATION_TEXT))
            return
        turn.state.chat_context = None
        turn.state.chat_interaction_count = 0
        deals = await self._search(turn, category)
        if deals:
            turn.outbound.extend(self._show(turn, deals))
            return
        turn.state.last_deals = None
        turn.state.step = DialogStep.LOCATION_CONFIRMED
        turn.outbound.append(text_message(NO_DEALS_TEXT))

    async def _more_deals(self, turn: _Turn) -> None:
        state = turn.state
        if state.location is None:
            turn.state.step = DialogStep.AWAITING_LOCATION
            turn.outbound.append(text_message(NEED_LOCATION_TEXT))
            return
        if not state.category:
            state.step = DialogStep.LOCATION_CONFIRMED
            turn.outbound.append(category_prompt_card(state.location))
            return
        deals = await self._search(turn, state.category)
        if deals:
            turn.outbound.extend(self._show(turn, deals))
            return
        # Nothing new: the deals already on screen stay valid
        state.step = DialogStep.DEALS_SHOWN if state.last_deals else DialogStep.LOCATION_CONFIRMED
        turn.outbound.append(text_message(NO_MORE_DEALS_TEXT))

    # ── Buttons ───────────────────────────────────────────────

    def _deal_at(self, turn: _Turn, index: int) -> Deal:
        deals = turn.state.last_deals or []
        if index >= len(deals):
            raise InvalidInput(DEAL_GONE_TEXT, f"deal index {index} outside {len(deals)} shown deals")
        return deals[index]

    async def _on_button(self, turn: _Turn, button: Button) -> None:
        state = turn.state
        action = button.action

        if action == "share_location_prompt":
            state.step = DialogStep.AWAITING_LOCATION
            turn.outbound.append(share_location_text())
        elif action == "how_it_works":
            turn.outbound.append(how_it_works_text())
        elif action == "about":
            turn.outbound.append(about_text())
        elif action == "search":
            await self._new_search(turn, button.category)
        elif action == "more_deals":
            await self._more_deals(turn)
        elif action == "new_search":
            self._clear_search(turn)
            if state.location is None:
                state.step = DialogStep.WELCOME
                turn.outbound.append(welcome_card())
            else:
                state.step = DialogStep.LOCATION_CONFIRMED
                turn.outbound.append(category_list_message(state.location))
        elif action == "share_deals":
            if not state.last_deals:
                raise InvalidInput(NOTHING_TO_SHARE_TEXT, "share_deals without deals")
            label = state.location.label if state.location else settings.region_name
            turn.outbound.append(share_deals_text(state.last_deals, state.category, label))
        elif action == "get_directions":
            deal = self._deal_at(turn, button.index)
            state.step = DialogStep.DEALS_SHOWN
            turn.outbound.append(directions_message(deal))
        elif action == "share_deal":
            deal = self._deal_at(turn, button.index)
            state.step = DialogStep.DEALS_SHOWN
            turn.outbound.append(share_deal_text(deal))
        elif action == "set_reminder":
            deal = self._deal_at(turn, button.index)
            state.pending_reminder_deal = deal
            state.step = DialogStep.AWAITING_REMINDER_TIME
            turn.outbound.append(reminder_prompt_card(deal))
        elif action == "reminder":
            if state.pending_reminder_deal is None:
                raise InvalidInput(NO_PENDING_REMINDER_TEXT, "reminder time without a pending deal")
            self._schedule_reminder(turn, local_now() + timedelta(hours=button.hours))
        elif action == "chat":
            if not state.last_deals:
                raise InvalidInput(NOTHING_TO_SHARE_TEXT, "chat without deals")
            self.chat.enter(turn.session)
            turn.outbound.append(text_message(
                "💬 *Chat mode on!* Ask me anything about these deals, like "
                "\"which is the best value?\" or \"how do I get to the first one?\""
            ))

    def _schedule_reminder(self, turn: _Turn, remind_at) -> None:
        state = turn.state
        deal = state.pending_reminder_deal
        self.reminders.schedule(turn.event.store_id, turn.event.user_id, deal, remind_at)
        state.pending_reminder_deal = None
        state.step = DialogStep.DEALS_SHOWN
        turn.outbound.append(reminder_confirmation_text(deal, remind_at))

    # ── Free text ─────────────────────────────────────────────

    def _inactive(self, turn: _Turn) -> bool:
        last = turn.session.timestamp
        return last is not None and now_ms() - last >= settings.greeting_reset_minutes * 60_000

    async def _on_text(self, turn: _Turn, text: str) -> None:
        state = turn.state

        if text and is_restart(text):
            turn.outbound.extend(self._restart(turn, [welcome_card()]))
            return
        if text and is_greeting(text) and state.step != DialogStep.WELCOME and self._inactive(turn):
            logger.info("_on_text — greeting after inactivity, back to welcome")
            self._clear_search(turn)
            state.location = None
            state.step = DialogStep.WELCOME
            turn.outbound.append(welcome_card(text))
            return

        step = state.step
        if step == DialogStep.WELCOME:
            turn.outbound.append(welcome_card(text))
        elif step == DialogStep.AWAITING_LOCATION:
            if not text or is_greeting(text):
                turn.outbound.append(share_location_text())
            else:
                await self._on_place_name(turn, text)
        elif step in (DialogStep.LOCATION_CONFIRMED, DialogStep.SEARCHING):
            category = category_from_text(text)
            if state.location is None:
                state.step = DialogStep.WELCOME
                turn.outbound.append(welcome_card(text))
            elif category:
                await self._new_search(turn, category)
            else:
                turn.outbound.append(category_prompt_card(state.location))
        elif step == DialogStep.AWAITING_REMINDER_TIME:
            remind_at = parse_reminder_time(text)
            if state.pending_reminder_deal is None:
                state.step = DialogStep.DEALS_SHOWN
                turn.outbound.append(text_message(NO_PENDING_REMINDER_TEXT))
            elif remind_at is None:
                turn.outbound.append(reminder_time_invalid_text())
            else:
                self._schedule_reminder(turn, remind_at)
        elif step == DialogStep.DEALS_SHOWN and not state.last_deals:
            turn.outbound.append(category_prompt_card(state.location) if state.location else welcome_card(text))
        elif step in (DialogStep.DEALS_SHOWN, DialogStep.CHAT_MODE):
            if step == DialogStep.DEALS_SHOWN:
                self.chat.enter(turn.session)
            turn.outbound.extend(await self._chat_turn(turn, text))

    async def _chat_turn(self, turn: _Turn, text: str) -> list[dict]:
        state = turn.state

        def restart() -> list[dict]:
            return self._restart(turn, chat_restart_messages(settings.chat_turn_quota))

        async def search_more() -> list[Deal]:
            if state.location is None or not state.category:
                return []
            return await self._search(turn, state.category)

        def no_more() -> list[dict]:
            return [text_message(NO_MORE_DEALS_TEXT)]

        def show(deals: list[Deal]) -> list[dict]:
            return self._show(turn, deals)

        return await self.chat.turn(
            turn.session, text, restart=restart, search_more=search_more, no_more=no_more, show_deals=show,
        )


dialog_machine = DialogStateMachine()
