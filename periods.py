from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional

WEEKDAY_LABELS = ["Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat"]
MONTH_LABELS = [
    "Jan", "Feb", "Mar", "Apr", "May", "Jun",
    "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
]


@dataclass(frozen=True)
class ChartWindow:
    slug: str
    start: date
    end: date
    labels: list[str]

    def bucket_index(self, day: date) -> int:
        if self.slug == "year":
            return day.month - 1
        if self.slug == "month":
            return day.day - 1
        return (day - self.start).days

    @property
    def date_range(self) -> str:
        return f"{_short(self.start)} - {_short(self.end)}"


def _short(value: date) -> str:
    return f"{value:%b} {value.day}, {value.year}"


def _month_end(first: date) -> date:
    if first.month == 12:
        next_month = first.replace(year=first.year + 1, month=1)
    else:
        next_month = first.replace(month=first.month + 1)
    return next_month - date.resolution


def resolve_chart_window(
    range_slug: Optional[str],
    offset: int = 0,
    *,
    today: Optional[date] = None,
) -> ChartWindow:
    if offset < 0:
        raise ValueError("Offset must not be negative")
    today = today or date.today()

    if range_slug == "month":
        total_months = today.year * 12 + today.month - 1 - offset
        first = date(total_months // 12, total_months % 12 + 1, 1)
        end = _month_end(first)
        labels = [
            str(day) if day % 5 == 0 or day == end.day else ""
            for day in range(1, end.day + 1)
        ]
        return ChartWindow("month", first, end, labels)

    if range_slug == "year":
        year = today.year - offset
        return ChartWindow(
            "year", date(year, 1, 1), date(year, 12, 31), list(MONTH_LABELS)
        )

    # weeks run Sunday through Saturday
    try:
        target = today - timedelta(weeks=offset)
        start = target - timedelta(days=(target.weekday() + 1) % 7)
        end = start + timedelta(days=6)
    except OverflowError as exc:
        raise ValueError(f"Offset out of range: {offset}") from exc
    return ChartWindow("week", start, end, list(WEEKDAY_LABELS))
