import json
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from dealbot.database.models.session_record import SessionRecord
from dealbot.database.repositories.session_repository import SessionRepository, session_key
from dealbot.errors import StorageUnavailable
from dealbot.schemas.session import DialogStep, SentMessage, UserSession


def test_load_missing_returns_empty_session(db):
    session = SessionRepository(db).load("store", "6591234567")

    assert session.conversation == []
    assert session.sent_messages == []
    assert session.shared_deal_ids == []
    assert session.user_state.step == DialogStep.WELCOME
    assert session.user_state.location is None


def test_save_then_load_round_trips(db, location, make_deal):
    repo = SessionRepository(db)
    session = UserSession()
    session.add_user_entry("hi")
    session.add_assistant_entry("Welcome!")
    session.user_state.step = DialogStep.DEALS_SHOWN
    session.user_state.category = "food"
    session.user_state.location = location
    session.user_state.last_deals = [make_deal(deal_id="D1")]
    session.shared_deal_ids = ["D1"]

    repo.save("store", "u1", session)
    loaded = repo.load("store", "u1")

    assert loaded.user_state.step == DialogStep.DEALS_SHOWN
    assert loaded.user_state.location.display_name == "Marina Bay"
    assert loaded.user_state.last_deals[0].deal_id == "D1"
    assert [e.content for e in loaded.conversation] == ["hi", "Welcome!"]
    assert loaded.last_interaction == "deals_shown"
    assert loaded.ttl is not None


def test_save_enforces_caps(db):
    session = UserSession()
    for i in range(30):
        session.add_user_entry(f"message {i}")
    session.sent_messages = [SentMessage(hash=f"h{i}", timestamp=i, kind="text") for i in range(60)]
    session.shared_deal_ids = [f"D{i}" for i in range(250)]

    stored = SessionRepository(db).save("store", "u1", session)

    assert len(stored.conversation) == 20
    assert stored.conversation[-1].content == "message 29"
    assert len(stored.sent_messages) == 50
    assert stored.sent_messages[0].hash == "h10"
    assert len(stored.shared_deal_ids) == 200
    assert stored.shared_deal_ids[0] == "D50"
    # the caller's object is untouched
    assert len(session.conversation) == 30


def test_save_strips_null_attributes(db):
    SessionRepository(db).save("store", "u1", UserSession())

    row = db.get(SessionRecord, session_key("store", "u1"))
    data = json.loads(row.data_json)
    assert "null" not in row.data_json
    assert "location" not in data["user_state"]
    assert "last_deals" not in data["user_state"]


def test_expired_session_loads_fresh(db):
    repo = SessionRepository(db)
    session = UserSession()
    session.user_state.step = DialogStep.CHAT_MODE
    repo.save("store", "u1", session)

    row = db.get(SessionRecord, session_key("store", "u1"))
    row.ttl = 1
    db.commit()

    assert repo.load("store", "u1").user_state.step == DialogStep.WELCOME
    assert repo.purge_expired() == 1


def test_unreadable_record_loads_fresh(db):
    db.add(SessionRecord(session_key=session_key("store", "u1"), store_id="store", user_id="u1",
                         data_json="{not json", last_interaction="welcome", timestamp=0, ttl=4102444800))
    db.commit()

    assert SessionRepository(db).load("store", "u1") == UserSession()


def test_backend_errors_surface_as_storage_unavailable():
    broken = MagicMock()
    broken.execute.side_effect = OperationalError("SELECT", {}, Exception("disk I/O error"))
    broken.get.side_effect = OperationalError("SELECT", {}, Exception("disk I/O error"))
    repo = SessionRepository(broken)

    with pytest.raises(StorageUnavailable):
        repo.load("store", "u1")
    with pytest.raises(StorageUnavailable):
        repo.save("store", "u1", UserSession())
    assert broken.rollback.called
