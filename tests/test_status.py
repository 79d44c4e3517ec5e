import pytest
from datetime import datetime, timedelta, timezone

from able_account.models import Account, parse_timestamp, to_iso
from able_account.status import (
    RotationStatus,
    days_since_change,
    days_until_due,
    due_date,
    status,
    status_label,
)

T = datetime(2025, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def foo():
    return Account(id=1, service_name="Foo", refresh_interval_days=30, last_password_change=to_iso(T))


@pytest.mark.parametrize("offset, expected", [
    (31, RotationStatus.OVERDUE),
    (30, RotationStatus.OVERDUE),
    (25, RotationStatus.DUE_SOON),
    (23, RotationStatus.DUE_SOON),
    (10, RotationStatus.GOOD),
])
def test_status_over_time(foo, offset, expected):
    assert status(foo, T + timedelta(days=offset)) is expected

def test_never_changed_is_overdue():
    account = Account(id=1, service_name="Foo", last_password_change=None)
    assert status(account, T) is RotationStatus.OVERDUE
    assert due_date(account) is None
    assert days_until_due(account, T) is None
    assert days_since_change(account, T) is None

def test_unparseable_change_date_counts_as_never_changed():
    account = Account(id=1, service_name="Foo", last_password_change="yesterday-ish")
    assert status(account, T) is RotationStatus.OVERDUE

def test_days_until_due_rounds_up(foo):
    assert days_until_due(foo, T + timedelta(days=10)) == 20
    assert days_until_due(foo, T + timedelta(days=10, hours=12)) == 20
    assert days_until_due(foo, T + timedelta(days=31)) == -1

def test_days_since_change_rounds_down(foo):
    assert days_since_change(foo, T + timedelta(days=10, hours=23)) == 10

def test_status_accepts_z_suffix_and_naive_now():
    account = Account(id=1, service_name="Foo", refresh_interval_days=30,
                      last_password_change="2025-01-01T00:00:00Z")
    assert status(account, datetime(2025, 1, 11)) is RotationStatus.GOOD

def test_parse_timestamp_normalizes_to_utc():
    moment = parse_timestamp("2025-01-01T02:00:00+02:00")
    assert moment == T

def test_status_label():
    assert "overdue" in status_label(RotationStatus.OVERDUE)
    assert status_label(RotationStatus.GOOD) == "Password recently changed"

@pytest.mark.parametrize("interval", [1, 7, 30, 90, 365])
@pytest.mark.parametrize("offset_hours", [0, 1, 24 * 6, 24 * 8, 24 * 29, 24 * 400])
def test_overdue_implies_nothing_left(interval, offset_hours):
    account = Account(id=1, service_name="Foo", refresh_interval_days=interval,
                      last_password_change=to_iso(T))
    now = T + timedelta(hours=offset_hours)
    current = status(account, now)
    assert current in set(RotationStatus)
    if current is RotationStatus.OVERDUE:
        assert days_until_due(account, now) <= 0
    else:
        assert days_until_due(account, now) > 0
