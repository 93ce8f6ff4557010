import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import TYPE_CHECKING, Optional
from zoneinfo import ZoneInfo

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config import get_settings
from models import IntervalUnit, Invoice

if TYPE_CHECKING:  # pragma: no cover
    from notifications import NotificationDispatcher


logger = logging.getLogger(__name__)

RECURRING_TITLE = "Recurring Bill Updated"


class InvalidInterval(ValueError):
    pass


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def _add_months(base: date, months: int) -> date:
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    return date(year, month, min(base.day, days_in_month(year, month)))


@dataclass(frozen=True)
class RecurrenceInterval:
    count: int
    unit: IntervalUnit

    def __post_init__(self) -> None:
        if not isinstance(self.unit, IntervalUnit):
            raise InvalidInterval(f"Unsupported interval unit: {self.unit!r}")
        if isinstance(self.count, bool) or not isinstance(self.count, int):
            raise InvalidInterval(f"Interval count must be an integer: {self.count!r}")
        if self.count <= 0:
            raise InvalidInterval(f"Interval count must be positive: {self.count}")

    @classmethod
    def parse(cls, raw: Optional[str]) -> "RecurrenceInterval":
        """Parse the stored ``"<count>-<unit>"`` form, e.g. ``"3-month"``."""
        if not raw or not isinstance(raw, str):
            raise InvalidInterval("Recurrence interval is missing")
        count_part, sep, unit_part = raw.strip().partition("-")
        if not sep:
            raise InvalidInterval(f"Malformed recurrence interval: {raw!r}")
        try:
            count = int(count_part)
        except ValueError as exc:
            raise InvalidInterval(f"Malformed recurrence interval: {raw!r}") from exc
        try:
            unit = IntervalUnit(unit_part.strip().lower())
        except ValueError as exc:
            raise InvalidInterval(f"Unsupported interval unit: {unit_part!r}") from exc
        return cls(count=count, unit=unit)

    def __str__(self) -> str:
        return f"{self.count}-{self.unit.value}"


def add_interval(base: date, interval: RecurrenceInterval) -> date:
    if interval.unit == IntervalUnit.week:
        return base + timedelta(weeks=interval.count)
    if interval.unit == IntervalUnit.month:
        return _add_months(base, interval.count)
    if interval.unit == IntervalUnit.year:
        return _add_months(base, 12 * interval.count)
    raise InvalidInterval(f"Unsupported interval unit: {interval.unit!r}")


def next_due_date(
    current_due_date: date, interval: RecurrenceInterval, as_of: date
) -> date:
    """Step ``current_due_date`` forward one interval at a time until it is
    strictly after ``as_of``.

    Each step starts from the previous result, so month-end dates snap to the
    last day of shorter months and stay there (Jan 31 -> Feb 29 -> Mar 29).
    """
    next_date = current_due_date
    while next_date <= as_of:
        next_date = add_interval(next_date, interval)
    return next_date


def format_due_date(value: date) -> str:
    return f"{value:%b} {value.day}, {value.year}"


@dataclass
class SweepResult:
    advanced: int = 0
    skipped: int = 0
    conflicts: int = 0


class RecurringSweep:
    def __init__(
        self,
        session: Session,
        dispatcher: Optional["NotificationDispatcher"] = None,
    ) -> None:
        self.session = session
        self.dispatcher = dispatcher

    def due_invoices(self, today: date):
        stmt = (
            select(
                Invoice.id,
                Invoice.owner_id,
                Invoice.vendor,
                Invoice.due_date,
                Invoice.recurrence_interval,
            )
            .where(
                Invoice.is_recurring.is_(True),
                Invoice.due_date.is_not(None),
                Invoice.due_date <= today,
            )
            .order_by(Invoice.due_date, Invoice.id)
        )
        return self.session.execute(stmt).all()

    def run(self, today: Optional[date] = None) -> SweepResult:
        today = today or local_today()
        rows = self.due_invoices(today)
        logger.info(f"recurring_sweep: today={today} due={len(rows)}")

        result = SweepResult()
        for row in rows:
            try:
                new_due = self._advance(row, today)
            except (InvalidInterval, SQLAlchemyError) as exc:
                self.session.rollback()
                logger.warning(
                    f"recurring_sweep: skipped invoice={row.id} "
                    f"interval={row.recurrence_interval!r} error={exc}"
                )
                result.skipped += 1
                continue

            if new_due is None:
                logger.info(
                    f"recurring_sweep: invoice={row.id} already advanced elsewhere"
                )
                result.conflicts += 1
                continue

            result.advanced += 1
            logger.info(
                f"recurring_sweep: invoice={row.id} vendor={row.vendor!r} "
                f"due_date={row.due_date} -> {new_due}"
            )
            if self.dispatcher is not None:
                self.dispatcher.send(
                    row.owner_id,
                    RECURRING_TITLE,
                    f"Your bill for {row.vendor} has a new due date: "
                    f"{format_due_date(new_due)}.",
                    {"invoice_id": row.id, "due_date": new_due.isoformat()},
                )

        logger.info(
            f"recurring_sweep: advanced={result.advanced} "
            f"skipped={result.skipped} conflicts={result.conflicts}"
        )
        return result

    def _advance(self, row, today: date) -> Optional[date]:
        interval = RecurrenceInterval.parse(row.recurrence_interval)
        new_due = next_due_date(row.due_date, interval, today)
        # Only advance if the stored date is still the one we read.
        stmt = (
            update(Invoice)
            .where(
                Invoice.id == row.id,
                Invoice.is_recurring.is_(True),
                Invoice.due_date == row.due_date,
            )
            .values(due_date=new_due)
            .execution_options(synchronize_session=False)
        )
        outcome = self.session.execute(stmt)
        self.session.commit()
        if not outcome.rowcount:
            return None
        return new_due
