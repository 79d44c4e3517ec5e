import pytest
from datetime import datetime, timedelta, timezone

from able_account.models import to_iso
from able_account.reminders import (
    AUTO_DETECTED_NOTE,
    OVERDUE_COUNT_KEY,
    OVERDUE_NAMES_KEY,
    PENDING_ACCOUNTS_KEY,
    import_pending_accounts,
    publish_overdue_summary,
    reminder_message,
)

NOW = datetime(2025, 6, 1, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Overdue summary
# ---------------------------------------------------------------------------

def test_publish_overdue_summary(repo, blob_store):
    repo.add("Old", refresh_interval_days=30, last_password_change=to_iso(NOW - timedelta(days=60)))
    repo.add("Fresh", refresh_interval_days=30, last_password_change=to_iso(NOW))

    summary = publish_overdue_summary(repo, blob_store, NOW)
    assert summary == {"count": 1, "names": ["Old"]}
    assert blob_store.get(OVERDUE_COUNT_KEY) == 1
    assert blob_store.get(OVERDUE_NAMES_KEY) == ["Old"]

def test_publish_overdue_summary_survives_store_failure(repo, blob_store):
    blob_store.fail_set.add(OVERDUE_COUNT_KEY)
    with pytest.warns(RuntimeWarning, match="overdue summary"):
        summary = publish_overdue_summary(repo, blob_store, NOW)
    assert summary["count"] == 0

def test_reminder_message():
    assert reminder_message(1) == "1 account needs a password refresh."
    assert reminder_message(4) == "4 accounts need a password refresh."


# ---------------------------------------------------------------------------
# Pending signups
# ---------------------------------------------------------------------------

def test_import_pending_accounts(repo, blob_store):
    repo.add("GitHub", url="https://github.com")
    blob_store.set(PENDING_ACCOUNTS_KEY, [
        {"service_name": "GitHub again", "url": "https://GITHUB.com"},
        {"service_name": "Shop", "url": "https://shop.example", "username": "me",
         "detected_at": "2025-05-01T08:00:00Z"},
        {"url": "https://nameless.example"},
        "garbage",
    ])

    added = import_pending_accounts(repo, blob_store, NOW)
    assert added == 1
    assert blob_store.get(PENDING_ACCOUNTS_KEY) is None

    shop = repo.search("shop")[0]
    assert shop.username == "me"
    assert shop.notes == AUTO_DETECTED_NOTE
    assert shop.refresh_interval_days == 90
    assert shop.last_password_change.startswith("2025-05-01T08:00:00")

def test_import_pending_without_detection_time_uses_now(repo, blob_store):
    blob_store.set(PENDING_ACCOUNTS_KEY, [{"service_name": "Forum", "url": "https://forum.example"}])
    import_pending_accounts(repo, blob_store, NOW)
    assert repo.list()[0].last_password_change == to_iso(NOW)

def test_import_pending_nothing_pending(repo, blob_store):
    assert import_pending_accounts(repo, blob_store, NOW) == 0
    assert ("remove", PENDING_ACCOUNTS_KEY) not in blob_store.ops

def test_import_pending_malformed_list(repo, blob_store):
    blob_store.set(PENDING_ACCOUNTS_KEY, {"not": "a list"})
    with pytest.warns(RuntimeWarning, match="malformed"):
        assert import_pending_accounts(repo, blob_store, NOW) == 0
    assert blob_store.get(PENDING_ACCOUNTS_KEY) is None

def test_import_pending_skips_non_string_fields(repo, blob_store):
    blob_store.set(PENDING_ACCOUNTS_KEY, [
        {"service_name": "Numeric", "url": 42},
        {"service_name": "Listy", "url": "https://listy.example", "username": ["me"]},
        {"service_name": "Padded", "url": "  https://padded.example  "},
    ])
    assert import_pending_accounts(repo, blob_store, NOW) == 1
    assert [(a.service_name, a.url) for a in repo.list()] == [("Padded", "https://padded.example")]
    assert blob_store.get(PENDING_ACCOUNTS_KEY) is None
