import json
from datetime import datetime, timedelta, timezone

import pytest

from services.composer import REMINDER_TAG, ReminderCopy, compose_reminder

NOW = datetime(2026, 10, 16, 9, 0, tzinfo=timezone.utc)


def test_same_now_gives_identical_bytes():
    first = compose_reminder(NOW)
    second = compose_reminder(NOW)
    assert first == second
    assert first.to_json().encode() == second.to_json().encode()


def test_different_now_only_changes_timestamp():
    first = json.loads(compose_reminder(NOW).to_json())
    later = json.loads(compose_reminder(NOW + timedelta(minutes=5)).to_json())
    assert first["tag"] == later["tag"] == REMINDER_TAG
    assert later["data"]["timestamp"] - first["data"]["timestamp"] == 5 * 60 * 1000
    first["data"].pop("timestamp")
    later["data"].pop("timestamp")
    assert first == later


def test_wire_format_matches_service_worker_fields():
    wire = compose_reminder(NOW).to_wire()
    assert wire["requireInteraction"] is True
    assert wire["data"] == {"url": "/", "timestamp": int(NOW.timestamp() * 1000)}
    assert [a["action"] for a in wire["actions"]] == ["select-snack", "dismiss"]
    assert wire["actions"][0]["title"] == "Select Snack"
    assert "icon" not in wire["actions"][1]


def test_copy_is_configurable():
    payload = compose_reminder(NOW, ReminderCopy(title="Snacks!", closes_at="13:30", url="/order"))
    assert payload.title == "Snacks!"
    assert "13:30" in payload.body
    assert payload.data.url == "/order"
    assert payload.tag == REMINDER_TAG


def test_payload_is_immutable():
    payload = compose_reminder(NOW)
    with pytest.raises(Exception):
        payload.title = "changed"


def test_naive_now_is_rejected():
    with pytest.raises(ValueError):
        compose_reminder(datetime(2026, 10, 16, 9, 0))
