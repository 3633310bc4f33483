from enum import Enum
from typing import Optional

from pydantic import BaseModel


class EventKind(str, Enum):
    TEXT = "text"
    INTERACTIVE = "interactive"
    LOCATION = "location"


class InboundEvent(BaseModel):
    """One user message normalized from the messaging ingress."""
    store_id: str
    user_id: str
    kind: EventKind
    text: Optional[str] = None
    button_id: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    message_id: Optional[str] = None
    contact_name: Optional[str] = None

    @property
    def key(self) -> str:
        """Stable identity used to suppress duplicate sends when the same event is re-delivered."""
        if self.message_id:
            return self.message_id
        return f"{self.kind.value}:{self.text or ''}:{self.button_id or ''}:{self.latitude}:{self.longitude}"
