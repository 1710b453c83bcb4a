import json
import os
from datetime import datetime, timedelta, timezone

import pytest

from onedrive_uploader.errors import ProtocolError
from onedrive_uploader.session_store import (
    FragmentRange,
    SessionStore,
    format_graph_datetime,
    parse_graph_datetime,
    parse_range,
    session_identity,
)


def test_parse_range_open_and_closed():
    assert parse_range("500000-") == FragmentRange(500000, None)
    assert parse_range("0-327679") == FragmentRange(0, 327679)


@pytest.mark.parametrize("value", ["", "abc", "-5", "10-2", "x-y", None, 12])
def test_parse_range_rejects_malformed_values(value):
    with pytest.raises(ProtocolError):
        parse_range(value)


def test_identity_is_a_pure_function_of_the_normalized_path():
    assert session_identity("Backup/videos/a.mp4") == session_identity("/Backup//videos/a.mp4/")
    assert session_identity("Backup\\videos\\a.mp4") == session_identity("Backup/videos/a.mp4")
    assert session_identity("Backup/videos/a.mp4") != session_identity("Backup/videos/b.mp4")
    assert len(session_identity("a")) == 32


def test_graph_datetime_round_trip():
    parsed = parse_graph_datetime("2024-01-29T09:21:55.523Z")

    assert parsed == datetime(2024, 1, 29, 9, 21, 55, 523000, tzinfo=timezone.utc)
    assert format_graph_datetime(parsed) == "2024-01-29T09:21:55.523Z"
    assert parse_graph_datetime(None) is None


def test_new_session_is_not_resumable(tmp_path):
    store = SessionStore(str(tmp_path))

    session = store.open_session("Backup/video.mp4", 327680)

    assert session.resumable is False
    assert session.start_position() == 0
    assert list(tmp_path.iterdir()) == []


def test_set_data_persists_the_acknowledged_state(tmp_path):
    store = SessionStore(str(tmp_path))
    session = store.open_session("Backup/video.mp4", 327680)

    session.set_data({
        "uploadUrl": "https://upload.example.com/abc",
        "expirationDateTime": "2099-01-01T00:00:00Z",
        "nextExpectedRanges": ["655360-"],
    })

    record_path = tmp_path / session.identity
    record = json.loads(record_path.read_text(encoding="utf-8"))
    assert record == {
        "expirationDateTime": "2099-01-01T00:00:00.000Z",
        "nextExpectedRanges": ["655360-"],
        "uploadUrl": "https://upload.example.com/abc",
    }

    reopened = store.open_session("/Backup/video.mp4", 327680)
    assert reopened.resumable is True
    assert reopened.upload_url == "https://upload.example.com/abc"
    assert reopened.start_position() == 655360


def test_partial_response_keeps_other_fields(tmp_path):
    store = SessionStore(str(tmp_path))
    session = store.open_session("a.bin", 327680)
    session.set_data({"uploadUrl": "https://upload.example.com/a", "expirationDateTime": "2099-01-01T00:00:00Z"})

    session.set_data({"nextExpectedRanges": ["327680-"]})

    assert session.upload_url == "https://upload.example.com/a"
    assert session.start_position() == 327680


def test_finish_deletes_the_record(tmp_path):
    store = SessionStore(str(tmp_path))
    session = store.open_session("a.bin", 327680)
    session.set_data({"uploadUrl": "https://upload.example.com/a"})
    assert os.path.exists(tmp_path / session.identity)

    session.finish()

    assert not os.path.exists(tmp_path / session.identity)
    assert store.open_session("a.bin", 327680).resumable is False


def test_unreadable_record_is_discarded(tmp_path):
    store = SessionStore(str(tmp_path))
    identity = session_identity("a.bin")
    (tmp_path / identity).write_text("{not json", encoding="utf-8")

    session = store.open_session("a.bin", 327680)

    assert session.resumable is False
    assert not os.path.exists(tmp_path / identity)


def test_record_with_bad_ranges_is_discarded(tmp_path):
    store = SessionStore(str(tmp_path))
    identity = session_identity("a.bin")
    (tmp_path / identity).write_text(json.dumps({
        "uploadUrl": "https://upload.example.com/a",
        "nextExpectedRanges": ["garbage"],
    }), encoding="utf-8")

    session = store.open_session("a.bin", 327680)

    assert session.resumable is False
    assert not os.path.exists(tmp_path / identity)


def test_expiration_check(tmp_path):
    store = SessionStore(str(tmp_path))
    session = store.open_session("a.bin", 327680)
    now = datetime(2024, 1, 1, tzinfo=timezone.utc)

    session.set_data({"expirationDateTime": format_graph_datetime(now - timedelta(seconds=1))}, store=False)
    assert session.is_expired(now) is True

    session.set_data({"expirationDateTime": format_graph_datetime(now + timedelta(hours=1))}, store=False)
    assert session.is_expired(now) is False
