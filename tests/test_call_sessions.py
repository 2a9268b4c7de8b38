from __future__ import annotations

from datetime import datetime, timezone

from app.monitoring.metrics import call_sessions_active
from chatwave.calls.sessions import CallKind, CallSessionTable, CallStatus


class FakeHandle:
    def __init__(self) -> None:
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


def _frozen_stamp(millis: int):
    return lambda: millis * 1_000_000


def test_call_id_embeds_parties_and_stamp() -> None:
    table = CallSessionTable(stamp=_frozen_stamp(1700000000000))

    session = table.create("alice", "bob", CallKind.VIDEO)

    assert session.call_id == "alice_bob_1700000000000"
    assert session.status is CallStatus.RINGING
    assert session.kind is CallKind.VIDEO
    assert table.get(session.call_id) is session


def test_call_ids_never_repeat_within_same_millisecond() -> None:
    table = CallSessionTable(stamp=_frozen_stamp(5))

    first = table.create("alice", "bob", CallKind.VOICE)
    table.remove(first.call_id)
    second = table.create("alice", "bob", CallKind.VOICE)

    assert first.call_id != second.call_id
    assert second.call_id == "alice_bob_6"
    assert table.get(first.call_id) is None


def test_update_records_timestamps() -> None:
    moment = datetime(2024, 1, 1, tzinfo=timezone.utc)
    table = CallSessionTable(clock=lambda: moment)
    session = table.create("alice", "bob", CallKind.VOICE)

    updated = table.update(session.call_id, CallStatus.ACCEPTED, accepted_at=moment)

    assert updated is session
    assert session.status is CallStatus.ACCEPTED
    assert session.accepted_at == moment
    assert table.update("missing", CallStatus.ENDED) is None


def test_remove_is_idempotent_and_cancels_timer() -> None:
    table = CallSessionTable()
    session = table.create("alice", "bob", CallKind.VOICE)
    handle = FakeHandle()
    session.timer = handle

    assert table.remove(session.call_id) is session
    assert handle.cancelled is True
    assert session.timer is None
    assert table.remove(session.call_id) is None
    assert len(table) == 0


def test_involving_and_counterpart() -> None:
    table = CallSessionTable()
    first = table.create("alice", "bob", CallKind.VOICE)
    table.create("carol", "dave", CallKind.VOICE)

    assert table.involving("bob") == [first]
    assert first.counterpart("alice") == "bob"
    assert first.counterpart("bob") == "alice"
    assert first.counterpart("mallory") is None


def test_active_gauge_tracks_table_size() -> None:
    table = CallSessionTable()
    session = table.create("alice", "bob", CallKind.VOICE)
    assert call_sessions_active.value() == 1.0

    table.remove(session.call_id)
    assert call_sessions_active.value() == 0.0


def test_call_kind_parse() -> None:
    assert CallKind.parse("Video") is CallKind.VIDEO
    assert CallKind.parse(CallKind.VOICE) is CallKind.VOICE
    assert CallKind.parse("screen") is None
    assert CallKind.parse(None) is None


def test_to_public_serialises_session() -> None:
    table = CallSessionTable(stamp=_frozen_stamp(10))
    payload = table.create("alice", "bob", CallKind.VOICE).to_public()

    assert payload["callId"] == "alice_bob_10"
    assert payload["callType"] == "voice"
    assert payload["status"] == "ringing"
    assert payload["acceptedAt"] is None
