import hashlib
import json

from dealbot.messages.builders import message_kind
from dealbot.schemas.session import SentMessage, UserSession
from dealbot.utils.clock import now_ms


def message_hash(event_key: str, position: int, message: dict) -> str:
    """Stable across retries: same event, same slot, same content → same hash."""
    canonical = json.dumps(message, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(f"{event_key}|{position}|{canonical}".encode("utf-8")).hexdigest()


def stage_outbound(session: UserSession, event_key: str, messages: list[dict]) -> list[dict]:
    """
    Record each not-yet-sent message in ``session.sent_messages`` and return the
    ones that should actually go out. Messages whose hash is already recorded
    were delivered by an earlier attempt at the same event.
    """
    already = {m.hash for m in session.sent_messages}
    pending = []
    for position, message in enumerate(messages):
        digest = message_hash(event_key, position, message)
        if digest in already:
            continue
        session.sent_messages.append(SentMessage(hash=digest, timestamp=now_ms(), kind=message_kind(message)))
        already.add(digest)
        pending.append(message)
    return pending
