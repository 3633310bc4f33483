from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, Field

from dealbot.schemas.deal import ChatContext, Deal
from dealbot.schemas.location import Location


class DialogStep(str, Enum):
    WELCOME = "welcome"
    AWAITING_LOCATION = "awaiting_location"
    LOCATION_CONFIRMED = "location_confirmed"
    SEARCHING = "searching"
    DEALS_SHOWN = "deals_shown"
    AWAITING_REMINDER_TIME = "awaiting_reminder_time"
    CHAT_MODE = "chat_mode"


class ConversationEntry(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class SentMessage(BaseModel):
    hash: str
    timestamp: int          # ms since epoch
    kind: str               # text | interactive | location | template


class UserState(BaseModel):
    step: DialogStep = DialogStep.WELCOME
    category: Optional[str] = None
    location: Optional[Location] = None
    last_deals: Optional[list[Deal]] = None
    chat_context: Optional[ChatContext] = None
    pending_reminder_deal: Optional[Deal] = None
    chat_interaction_count: int = 0


class UserSession(BaseModel):
    """Persistent per-user conversational record keyed by (store id, user id)."""
    conversation: list[ConversationEntry] = Field(default_factory=list)
    sent_messages: list[SentMessage] = Field(default_factory=list)
    shared_deal_ids: list[str] = Field(default_factory=list)
    processed_events: list[str] = Field(default_factory=list)   # inbound message ids already handled
    user_state: UserState = Field(default_factory=UserState)
    last_interaction: Optional[str] = None
    timestamp: Optional[int] = None     # ms since epoch of the last write
    ttl: Optional[int] = None           # unix seconds

    def add_user_entry(self, content: str) -> None:
        self.conversation.append(ConversationEntry(role="user", content=content))

    def add_assistant_entry(self, content: str) -> None:
        self.conversation.append(ConversationEntry(role="assistant", content=content))

    def add_shared_deal_ids(self, deals: list[Deal], cap: int) -> None:
        """Append ids in order, skipping ones already shared, keeping only the newest ``cap``."""
        for deal in deals:
            if deal.deal_id and deal.deal_id not in self.shared_deal_ids:
                self.shared_deal_ids.append(deal.deal_id)
        if len(self.shared_deal_ids) > cap:
            self.shared_deal_ids = self.shared_deal_ids[-cap:]

    def mark_processed(self, message_id: Optional[str]) -> None:
        if message_id and message_id not in self.processed_events:
            self.processed_events.append(message_id)

    def apply_caps(self, conversation: int, sent_messages: int, shared_deal_ids: int, processed_events: int = 50) -> None:
        self.conversation = [e for e in self.conversation if e.content][-conversation:]
        self.sent_messages = self.sent_messages[-sent_messages:]
        self.shared_deal_ids = [d for d in self.shared_deal_ids if d][-shared_deal_ids:]
        self.processed_events = self.processed_events[-processed_events:]
