from datetime import date, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from database import Base
from models import IntervalUnit, Invoice
from recurrence import (
    InvalidInterval,
    RecurrenceInterval,
    RecurringSweep,
    add_interval,
    format_due_date,
    next_due_date,
)


class RecordingDispatcher:
    def __init__(self) -> None:
        self.sent: list[tuple] = []

    def send(self, owner_id, title, body, data=None):
        self.sent.append((owner_id, title, body, data))
        return True


def _session() -> Session:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return Session(engine)


def _recurring(invoice_id: str, due: date, interval: str, owner: str = "u1") -> Invoice:
    return Invoice(
        id=invoice_id,
        owner_id=owner,
        vendor=f"Vendor {invoice_id}",
        amount_cents=1000,
        due_date=due,
        category="Utilities",
        is_recurring=True,
        recurrence_interval=interval,
    )


def test_parse_interval_round_trips_wire_form():
    interval = RecurrenceInterval.parse("3-month")
    assert interval == RecurrenceInterval(3, IntervalUnit.month)
    assert str(interval) == "3-month"


@pytest.mark.parametrize(
    "raw", [None, "", "month", "0-month", "-1-week", "two-week", "1-fortnight", "1-day"]
)
def test_parse_interval_rejects_malformed(raw):
    with pytest.raises(InvalidInterval):
        RecurrenceInterval.parse(raw)


def test_interval_rejects_unknown_unit_object():
    with pytest.raises(InvalidInterval):
        RecurrenceInterval(1, "day")


def test_add_interval_snaps_month_end():
    monthly = RecurrenceInterval(1, IntervalUnit.month)
    assert add_interval(date(2024, 1, 31), monthly) == date(2024, 2, 29)
    assert add_interval(date(2023, 1, 31), monthly) == date(2023, 2, 28)
    yearly = RecurrenceInterval(1, IntervalUnit.year)
    assert add_interval(date(2024, 2, 29), yearly) == date(2025, 2, 28)


def test_next_due_date_example_from_monthly_bill():
    monthly = RecurrenceInterval(1, IntervalUnit.month)
    assert next_due_date(date(2024, 1, 1), monthly, date(2024, 3, 15)) == date(
        2024, 4, 1
    )


def test_next_due_date_is_strictly_after_reference():
    weekly = RecurrenceInterval(1, IntervalUnit.week)
    assert next_due_date(date(2024, 3, 1), weekly, date(2024, 3, 1)) == date(
        2024, 3, 8
    )


def test_next_due_date_catches_up_several_periods_and_is_smallest():
    start = date(2023, 11, 15)
    as_of = date(2024, 6, 20)
    for interval in (
        RecurrenceInterval(1, IntervalUnit.week),
        RecurrenceInterval(2, IntervalUnit.week),
        RecurrenceInterval(1, IntervalUnit.month),
        RecurrenceInterval(3, IntervalUnit.month),
        RecurrenceInterval(1, IntervalUnit.year),
    ):
        result = next_due_date(start, interval, as_of)
        assert result > as_of

        steps = [start]
        while steps[-1] <= as_of:
            steps.append(add_interval(steps[-1], interval))
        assert result == steps[-1]
        assert all(step <= as_of for step in steps[:-1])


def test_format_due_date():
    assert format_due_date(date(2025, 3, 7)) == "Mar 7, 2025"


def test_sweep_isolates_malformed_interval():
    today = date(2025, 3, 10)
    yesterday = today - timedelta(days=1)
    with _session() as session:
        session.add_all(
            [
                _recurring("broken", yesterday, "1-fortnight"),
                _recurring("gym", yesterday, "1-week"),
                _recurring("phone", yesterday, "1-week", owner="u2"),
            ]
        )
        session.commit()

        dispatcher = RecordingDispatcher()
        result = RecurringSweep(session, dispatcher).run(today)

        assert result.advanced == 2
        assert result.skipped == 1
        assert result.conflicts == 0

        session.expire_all()
        assert session.get(Invoice, "broken").due_date == yesterday
        assert session.get(Invoice, "gym").due_date == yesterday + timedelta(weeks=1)
        assert session.get(Invoice, "phone").due_date == yesterday + timedelta(
            weeks=1
        )

        assert sorted(owner for owner, *_ in dispatcher.sent) == ["u1", "u2"]
        owner, title, body, data = dispatcher.sent[0]
        assert title == "Recurring Bill Updated"
        assert "Mar 16, 2025" in body
        assert data["due_date"] == "2025-03-16"


def test_sweep_treats_due_today_as_due_and_ignores_future_and_plain():
    today = date(2025, 5, 1)
    with _session() as session:
        session.add_all(
            [
                _recurring("today", today, "1-month"),
                _recurring("later", today + timedelta(days=3), "1-month"),
                Invoice(
                    id="plain",
                    owner_id="u1",
                    vendor="One-off",
                    amount_cents=500,
                    due_date=today - timedelta(days=10),
                ),
            ]
        )
        session.commit()

        result = RecurringSweep(session).run(today)

        assert result.advanced == 1
        session.expire_all()
        assert session.get(Invoice, "today").due_date == date(2025, 6, 1)
        assert session.get(Invoice, "later").due_date == date(2025, 5, 4)
        assert session.get(Invoice, "plain").due_date == date(2025, 4, 21)


def test_sweep_catches_up_after_downtime_in_one_run():
    today = date(2025, 5, 20)
    with _session() as session:
        session.add(_recurring("rent", date(2025, 1, 1), "1-month"))
        session.commit()

        RecurringSweep(session).run(today)

        session.expire_all()
        assert session.get(Invoice, "rent").due_date == date(2025, 6, 1)


def test_sweep_second_run_finds_nothing_to_do():
    today = date(2025, 5, 20)
    with _session() as session:
        session.add(_recurring("rent", date(2025, 5, 1), "1-month"))
        session.commit()

        first = RecurringSweep(session).run(today)
        second = RecurringSweep(session).run(today)

        assert first.advanced == 1
        assert second.advanced == 0


def test_conditional_update_does_not_double_advance():
    today = date(2025, 5, 20)
    with _session() as session:
        session.add(_recurring("rent", date(2025, 5, 1), "1-month"))
        session.commit()

        sweep = RecurringSweep(session)
        row = sweep.due_invoices(today)[0]
        assert sweep._advance(row, today) == date(2025, 6, 1)
        # same stale snapshot, as an overlapping run would hold it
        assert sweep._advance(row, today) is None

        session.expire_all()
        assert session.get(Invoice, "rent").due_date == date(2025, 6, 1)


def test_sweep_skips_store_failure_and_continues(monkeypatch):
    today = date(2025, 5, 20)
    with _session() as session:
        session.add_all(
            [
                _recurring("a", date(2025, 5, 1), "1-month"),
                _recurring("b", date(2025, 5, 2), "1-month"),
            ]
        )
        session.commit()

        original = RecurringSweep._advance

        def flaky(self, row, as_of):
            if row.id == "a":
                raise OperationalError("UPDATE invoices", {}, Exception("locked"))
            return original(self, row, as_of)

        monkeypatch.setattr(RecurringSweep, "_advance", flaky)
        dispatcher = RecordingDispatcher()
        result = RecurringSweep(session, dispatcher).run(today)

        assert result.advanced == 1
        assert result.skipped == 1
        assert len(dispatcher.sent) == 1
        session.expire_all()
        assert session.get(Invoice, "a").due_date == date(2025, 5, 1)
        assert session.get(Invoice, "b").due_date == date(2025, 6, 2)
