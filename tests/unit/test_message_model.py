from datetime import datetime, timezone

import pytest

from chatrelay.models.conversation import direct_key_for
from chatrelay.models.message import delivery_transition
from chatrelay.repositories.pagination import decode_cursor, encode_cursor, keyset_before, utc_now
from chatrelay.errors import ValidationError

NOW = datetime(2024, 5, 1, 12, 0, 0, 123000, tzinfo=timezone.utc)


def test_received_sets_received_and_sent():
    assert delivery_transition("received", NOW) == {"sent": True, "received": True, "received_at": NOW}


def test_read_sets_every_lower_flag():
    update = delivery_transition("read", NOW)

    assert update["sent"] is True
    assert update["received"] is True
    assert update["read"] is True
    assert update["read_at"] == NOW
    # received_at belongs to the receive step only
    assert "received_at" not in update


def test_transitions_never_clear_a_flag():
    for target in ("sent", "received", "read"):
        assert all(value is not False for value in delivery_transition(target, NOW).values())


def test_unknown_state_rejected():
    with pytest.raises(ValueError):
        delivery_transition("deleted", NOW)


def test_direct_key_ignores_order():
    assert direct_key_for("bob", "alice") == direct_key_for("alice", "bob") == "alice:bob"


def test_utc_now_is_millisecond_precise():
    now = utc_now()

    assert now.tzinfo is not None
    assert now.microsecond % 1000 == 0


def test_cursor_round_trips_timestamp_and_id():
    doc = {"_id": "64b7f0c2a1b2c3d4e5f60718", "created_at": NOW}

    ts, oid = decode_cursor(encode_cursor(doc, "created_at"))

    assert ts == NOW
    assert str(oid) == doc["_id"]


def test_naive_timestamps_are_treated_as_utc():
    doc = {"_id": "64b7f0c2a1b2c3d4e5f60718", "created_at": NOW.replace(tzinfo=None)}

    assert encode_cursor(doc, "created_at") == encode_cursor({**doc, "created_at": NOW}, "created_at")


@pytest.mark.parametrize("cursor", ["garbage", "123", "abc:64b7f0c2a1b2c3d4e5f60718", "123:zz"])
def test_malformed_cursor_rejected(cursor):
    with pytest.raises(ValidationError):
        decode_cursor(cursor)


def test_keyset_without_cursor_is_unfiltered():
    assert keyset_before("time", None) == {}
