from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional

from rapidfuzz.distance import Levenshtein
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from analysis_cache import AnalysisCache
from auth import Identity
from integrations import DealFinder, Extractor, Summarizer, UpstreamUnavailable
from models import DEFAULT_CATEGORY, Invoice, User
from periods import ChartWindow
from recurrence import InvalidInterval, RecurrenceInterval
from schemas import DealsIn, InvoiceIn, InvoicePatch

logger = logging.getLogger(__name__)

ANALYSIS_WINDOW_DAYS = 30
ANALYSIS_FALLBACK = (
    "I'm having a little trouble analyzing the data right now. "
    "Please try again in a moment."
)
DEALS_FALLBACK = (
    "Sorry, I couldn't search for deals at the moment. Please try again later."
)
# first number in the text, e.g. "Rs. 1,200.50" -> "1,200.50"
AMOUNT_PATTERN = re.compile(r"-?\d[\d,]*(?:\.\d+)?")


class InvoiceNotFound(ValueError):
    pass


class InvoiceValidationError(ValueError):
    pass


def to_cents(amount: Decimal) -> int:
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def cents_to_amount(cents: int) -> float:
    return cents / 100


def _day_start(value: date) -> datetime:
    return datetime.combine(value, time.min)


def _month_bounds(today: date) -> tuple[date, date]:
    first = today.replace(day=1)
    if first.month == 12:
        next_month = first.replace(year=first.year + 1, month=1)
    else:
        next_month = first.replace(month=first.month + 1)
    return first, next_month - date.resolution


@dataclass
class InvoiceFilters:
    search: Optional[str] = None
    sort_by: str = "created_at"
    order: str = "desc"


SORT_COLUMNS = {
    "created_at": Invoice.created_at,
    "due_date": Invoice.due_date,
    "amount": Invoice.amount_cents,
    "vendor": Invoice.vendor,
}


class InvoiceService:
    def __init__(self, session: Session, owner_id: str) -> None:
        self.session = session
        self.owner_id = owner_id

    def _owned(self):
        return select(Invoice).where(Invoice.owner_id == self.owner_id)

    def create(self, data: InvoiceIn) -> Invoice:
        invoice = Invoice(
            owner_id=self.owner_id,
            vendor=data.vendor,
            amount_cents=to_cents(data.amount),
            due_date=data.due_date,
            category=data.category or DEFAULT_CATEGORY,
            is_recurring=False,
            recurrence_interval=None,
        )
        self.session.add(invoice)
        self.session.commit()
        self.session.refresh(invoice)
        return invoice

    def get(self, invoice_id: str) -> Invoice:
        invoice = self.session.scalar(self._owned().where(Invoice.id == invoice_id))
        if not invoice:
            raise InvoiceNotFound("Invoice not found or user not authorized.")
        return invoice

    def list(self, filters: Optional[InvoiceFilters] = None) -> list[Invoice]:
        filters = filters or InvoiceFilters()
        column = SORT_COLUMNS.get(filters.sort_by)
        if column is None:
            raise InvoiceValidationError(f"Unsupported sort field: {filters.sort_by}")
        if filters.order not in ("asc", "desc"):
            raise InvoiceValidationError(f"Unsupported sort order: {filters.order}")

        stmt = self._owned()
        if filters.search:
            term = filters.search.strip().lower()
            term = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
            stmt = stmt.where(func.lower(Invoice.vendor).like(f"%{term}%", escape="\\"))
        if filters.order == "asc":
            stmt = stmt.order_by(column.asc(), Invoice.id.asc())
        else:
            stmt = stmt.order_by(column.desc(), Invoice.id.desc())
        return list(self.session.scalars(stmt).all())

    def update(self, invoice_id: str, patch: InvoicePatch) -> Invoice:
        invoice = self.get(invoice_id)
        fields = patch.model_fields_set

        if "vendor" in fields:
            if not patch.vendor:
                raise InvoiceValidationError("Vendor is required.")
            invoice.vendor = patch.vendor
        if "amount" in fields:
            if patch.amount is None:
                raise InvoiceValidationError("Amount is required.")
            invoice.amount_cents = to_cents(patch.amount)
        if "due_date" in fields:
            if patch.due_date is None and invoice.is_recurring:
                raise InvoiceValidationError(
                    "Cannot clear the due date of a recurring invoice."
                )
            invoice.due_date = patch.due_date
        if "category" in fields:
            invoice.category = patch.category or DEFAULT_CATEGORY

        self.session.commit()
        self.session.refresh(invoice)
        return invoice

    def delete(self, invoice_id: str) -> None:
        invoice = self.get(invoice_id)
        self.session.delete(invoice)
        self.session.commit()

    def set_recurring(self, invoice_id: str, interval: Optional[str]) -> Invoice:
        invoice = self.get(invoice_id)
        if interval:
            if not invoice.due_date:
                raise InvoiceValidationError(
                    "Cannot set recurrence on an invoice with no due date."
                )
            try:
                parsed = RecurrenceInterval.parse(interval)
            except InvalidInterval as exc:
                raise InvoiceValidationError(str(exc)) from exc
            invoice.is_recurring = True
            invoice.recurrence_interval = str(parsed)
        else:
            invoice.is_recurring = False
            invoice.recurrence_interval = None
        self.session.commit()
        self.session.refresh(invoice)
        return invoice

    def recent(self, since: datetime) -> list[Invoice]:
        stmt = (
            self._owned()
            .where(Invoice.created_at >= since)
            .order_by(Invoice.created_at.asc(), Invoice.id.asc())
        )
        return list(self.session.scalars(stmt).all())

    def total_between(self, start: date, end: date) -> int:
        stmt = select(func.coalesce(func.sum(Invoice.amount_cents), 0)).where(
            Invoice.owner_id == self.owner_id,
            Invoice.created_at >= _day_start(start),
            Invoice.created_at < _day_start(end + timedelta(days=1)),
        )
        return int(self.session.execute(stmt).scalar_one() or 0)

    def totals_by_day(self, start: date, end: date) -> dict[date, int]:
        day = func.date(Invoice.created_at).label("day")
        stmt = (
            select(day, func.sum(Invoice.amount_cents).label("total"))
            .where(
                Invoice.owner_id == self.owner_id,
                Invoice.created_at >= _day_start(start),
                Invoice.created_at < _day_start(end + timedelta(days=1)),
            )
            .group_by(day)
        )
        totals: dict[date, int] = {}
        for row in self.session.execute(stmt).all():
            key = row.day if isinstance(row.day, date) else date.fromisoformat(row.day)
            totals[key] = int(row.total or 0)
        return totals

    def totals_by_bucket(self, window: ChartWindow) -> list[int]:
        buckets = [0] * len(window.labels)
        for day, total in self.totals_by_day(window.start, window.end).items():
            index = window.bucket_index(day)
            if 0 <= index < len(buckets):
                buckets[index] += total
        return buckets

    def chart(self, window: ChartWindow) -> dict[str, object]:
        buckets = self.totals_by_bucket(window)
        return {
            "chart_data": {
                "labels": window.labels,
                "datasets": [{"data": [cents_to_amount(c) for c in buckets]}],
            },
            "total": cents_to_amount(sum(buckets)),
            "date_range": window.date_range,
        }

    def known_categories(self) -> list[str]:
        stmt = (
            select(Invoice.category)
            .where(Invoice.owner_id == self.owner_id)
            .distinct()
            .order_by(Invoice.category)
        )
        return [name for name in self.session.scalars(stmt).all() if name]

    def canonical_category(self, raw: Optional[str]) -> str:
        name = (raw or "").strip()
        if not name:
            return DEFAULT_CATEGORY
        input_lower = name.lower()
        categories = self.known_categories()
        for category in categories:
            if category.lower() == input_lower:
                return category

        best_distance: Optional[int] = None
        best: list[str] = []
        for category in categories:
            dist = int(Levenshtein.distance(input_lower, category.strip().lower()))
            if best_distance is None or dist < best_distance:
                best_distance = dist
                best = [category]
            elif dist == best_distance:
                best.append(category)
        if best_distance is not None and best_distance <= 1 and len(best) == 1:
            return best[0]
        return name[:100]


class UserService:
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    def get(self) -> Optional[User]:
        return self.session.get(User, self.user_id)

    def get_or_create(self) -> User:
        user = self.get()
        if user is None:
            user = User(id=self.user_id, monthly_budget_cents=0)
            self.session.add(user)
            self.session.flush()
        return user

    def budget_summary(self, today: date) -> dict[str, float]:
        user = self.get()
        start, end = _month_bounds(today)
        spent = InvoiceService(self.session, self.user_id).total_between(start, end)
        budget = user.monthly_budget_cents if user else 0
        return {
            "monthly_budget": cents_to_amount(budget),
            "total_expenses": cents_to_amount(spent),
        }

    def set_budget(self, amount: Decimal) -> User:
        user = self.get_or_create()
        user.monthly_budget_cents = to_cents(amount)
        self.session.commit()
        return user

    def save_push_token(self, token: str) -> User:
        token = token.strip()
        if not token:
            raise InvoiceValidationError("Push token is required.")
        user = self.get_or_create()
        user.push_token = token
        self.session.commit()
        return user


def _coerce_amount(value: Any) -> Optional[Decimal]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        match = AMOUNT_PATTERN.search(value)
        if not match:
            return None
        value = match.group(0).replace(",", "")
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        return None
    if not amount.is_finite() or amount < 0:
        return None
    return amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def _coerce_date(value: Any) -> Optional[date]:
    if not value or not isinstance(value, str):
        return None
    try:
        return date.fromisoformat(value.strip()[:10])
    except ValueError:
        return None


def normalize_extraction(raw: Optional[dict[str, Any]]) -> dict[str, Any]:
    """Map the extractor's loosely typed JSON onto invoice field names,
    dropping anything empty or unusable."""
    raw = raw or {}
    partial: dict[str, Any] = {}
    vendor = raw.get("vendor")
    if isinstance(vendor, str) and vendor.strip():
        partial["vendor"] = vendor.strip()[:200]
    amount = _coerce_amount(raw.get("amount"))
    if amount is not None:
        partial["amount"] = amount
    due = _coerce_date(raw.get("dueDate", raw.get("due_date")))
    if due is not None:
        partial["due_date"] = due
    category = raw.get("category")
    if isinstance(category, str) and category.strip():
        partial["category"] = category.strip()[:100]
    return partial


@dataclass
class UploadOutcome:
    status: str
    invoice: Optional[Invoice] = None
    partial_data: dict[str, Any] = field(default_factory=dict)

    @property
    def manual_required(self) -> bool:
        return self.status == "manual_required"


class UploadService:
    def __init__(self, session: Session, owner_id: str, extractor: Extractor) -> None:
        self.session = session
        self.owner_id = owner_id
        self.extractor = extractor

    def ingest(self, content: bytes, mime_type: str) -> UploadOutcome:
        try:
            raw = self.extractor.extract(content, mime_type)
        except UpstreamUnavailable as exc:
            logger.warning(f"upload: extraction unavailable for user={self.owner_id}: {exc}")
            raw = {}

        partial = normalize_extraction(raw)
        if "vendor" not in partial or "amount" not in partial:
            logger.info(
                f"upload: manual entry required for user={self.owner_id} "
                f"fields={sorted(partial)}"
            )
            return UploadOutcome(status="manual_required", partial_data=partial)

        invoices = InvoiceService(self.session, self.owner_id)
        invoice = invoices.create(
            InvoiceIn(
                vendor=partial["vendor"],
                amount=partial["amount"],
                due_date=partial.get("due_date"),
                category=invoices.canonical_category(partial.get("category")),
            )
        )
        return UploadOutcome(status="success", invoice=invoice)


@dataclass(frozen=True)
class AnalysisResult:
    cached: bool
    analysis: str


def _summary_row(invoice: Invoice) -> dict[str, object]:
    return {
        "vendor": invoice.vendor,
        "amount": cents_to_amount(invoice.amount_cents),
        "category": invoice.category,
        "due_date": invoice.due_date.isoformat() if invoice.due_date else None,
        "created_at": invoice.created_at.isoformat(),
    }


class AnalysisService:
    def __init__(
        self,
        session: Session,
        identity: Identity,
        summarizer: Summarizer,
        cache: AnalysisCache,
    ) -> None:
        self.session = session
        self.identity = identity
        self.summarizer = summarizer
        self.cache = cache

    def analysis(self, now: Optional[datetime] = None) -> AnalysisResult:
        now = now or datetime.utcnow()
        since = now - timedelta(days=ANALYSIS_WINDOW_DAYS)
        uid = self.identity.uid

        invoices = InvoiceService(self.session, uid).recent(since)
        count = len(invoices)
        total = sum(invoice.amount_cents for invoice in invoices)

        cached = self.cache.lookup(uid, count, total)
        if cached is not None:
            return AnalysisResult(cached=True, analysis=cached)

        with self.cache.lock_for(uid):
            # a concurrent request may have filled it while we waited
            cached = self.cache.lookup(uid, count, total)
            if cached is not None:
                return AnalysisResult(cached=True, analysis=cached)

            user = UserService(self.session, uid).get()
            budget = user.monthly_budget_cents if user else 0
            try:
                text = self.summarizer.summarize(
                    [_summary_row(invoice) for invoice in invoices],
                    self.identity.name,
                    budget,
                )
            except UpstreamUnavailable as exc:
                logger.error(f"analysis: summary unavailable for user={uid}: {exc}")
                return AnalysisResult(cached=False, analysis=ANALYSIS_FALLBACK)

            self.cache.put(uid, text, count, total)
            return AnalysisResult(cached=False, analysis=text)


class DealsService:
    def __init__(self, deal_finder: DealFinder) -> None:
        self.deal_finder = deal_finder

    def find_deals(self, data: DealsIn) -> str:
        vendor = (data.vendor or "").strip()
        if not vendor or data.amount is None or data.amount <= 0:
            raise InvoiceValidationError("Vendor and amount are required.")
        try:
            return self.deal_finder.find_deals(vendor, data.amount, data.category)
        except UpstreamUnavailable as exc:
            logger.error(f"deals: search unavailable for vendor={vendor!r}: {exc}")
            return DEALS_FALLBACK
