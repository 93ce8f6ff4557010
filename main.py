from functools import lru_cache
from typing import Optional

from fastapi import Depends, FastAPI, File, HTTPException, Request, Response, UploadFile
from sqlalchemy.orm import Session

from analysis_cache import AnalysisCache, get_analysis_cache
from auth import Identity, current_identity
from database import SessionLocal, init_db
from integrations import DealFinder, Extractor, GeminiClient, Summarizer
from periods import resolve_chart_window
from recurrence import local_today
from scheduler import SchedulerManager
from schemas import (
    BudgetIn,
    DealsIn,
    InvoiceIn,
    InvoiceOut,
    InvoicePatch,
    PushTokenIn,
    RecurrenceIn,
)
from services import (
    AnalysisService,
    DealsService,
    InvoiceFilters,
    InvoiceNotFound,
    InvoiceService,
    InvoiceValidationError,
    UploadService,
    UserService,
)


MAX_UPLOAD_BYTES = 10 * 1024 * 1024

app = FastAPI(title="Invoice Reminder")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@lru_cache(maxsize=1)
def _gemini_client() -> GeminiClient:
    return GeminiClient()


def get_extractor() -> Extractor:
    return _gemini_client()


def get_summarizer() -> Summarizer:
    return _gemini_client()


def get_deal_finder() -> DealFinder:
    return _gemini_client()


def get_cache() -> AnalysisCache:
    return get_analysis_cache()


scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    init_db()
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def filters_from_request(request: Request) -> InvoiceFilters:
    params = request.query_params
    return InvoiceFilters(
        search=params.get("search") or None,
        sort_by=params.get("sort_by", "created_at"),
        order=params.get("order", "desc"),
    )


def _invoice_payload(invoice) -> dict:
    return InvoiceOut.from_invoice(invoice).model_dump(mode="json")


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/api/invoices")
def api_list_invoices(
    request: Request,
    identity: Identity = Depends(current_identity),
    db: Session = Depends(get_db),
):
    try:
        invoices = InvoiceService(db, identity.uid).list(filters_from_request(request))
    except InvoiceValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return [_invoice_payload(invoice) for invoice in invoices]


@app.post("/api/invoices", status_code=201)
def api_create_invoice(
    data: InvoiceIn,
    identity: Identity = Depends(current_identity),
    db: Session = Depends(get_db),
):
    try:
        invoice = InvoiceService(db, identity.uid).create(data)
    except InvoiceValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"status": "success", "data": _invoice_payload(invoice)}


@app.post("/api/upload", status_code=201)
def api_upload_invoice(
    response: Response,
    invoice: Optional[UploadFile] = File(default=None),
    identity: Identity = Depends(current_identity),
    db: Session = Depends(get_db),
    extractor: Extractor = Depends(get_extractor),
):
    if invoice is None:
        raise HTTPException(status_code=400, detail="No file uploaded.")
    content = invoice.file.read(MAX_UPLOAD_BYTES + 1)
    if not content:
        raise HTTPException(status_code=400, detail="Empty file")
    if len(content) > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=400, detail="File too large (max 10MB)")

    mime_type = invoice.content_type or "application/octet-stream"
    outcome = UploadService(db, identity.uid, extractor).ingest(content, mime_type)
    if outcome.manual_required:
        response.status_code = 200
        return {"status": "manual_required", "partial_data": outcome.partial_data}
    return {"status": "success", "data": _invoice_payload(outcome.invoice)}


@app.put("/api/invoices/{invoice_id}")
def api_update_invoice(
    invoice_id: str,
    patch: InvoicePatch,
    identity: Identity = Depends(current_identity),
    db: Session = Depends(get_db),
):
    try:
        invoice = InvoiceService(db, identity.uid).update(invoice_id, patch)
    except InvoiceNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except InvoiceValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"status": "success", "data": _invoice_payload(invoice)}


@app.delete("/api/invoices/{invoice_id}")
def api_delete_invoice(
    invoice_id: str,
    identity: Identity = Depends(current_identity),
    db: Session = Depends(get_db),
):
    try:
        InvoiceService(db, identity.uid).delete(invoice_id)
    except InvoiceNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"status": "success", "message": "Invoice deleted successfully."}


@app.patch("/api/invoices/{invoice_id}/set-recurring")
def api_set_recurring(
    invoice_id: str,
    data: RecurrenceIn,
    identity: Identity = Depends(current_identity),
    db: Session = Depends(get_db),
):
    try:
        invoice = InvoiceService(db, identity.uid).set_recurring(
            invoice_id, data.interval
        )
    except InvoiceNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except InvoiceValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"status": "success", "data": _invoice_payload(invoice)}


@app.get("/api/analysis")
def api_analysis(
    identity: Identity = Depends(current_identity),
    db: Session = Depends(get_db),
    summarizer: Summarizer = Depends(get_summarizer),
    cache: AnalysisCache = Depends(get_cache),
):
    result = AnalysisService(db, identity, summarizer, cache).analysis()
    return {"cached": result.cached, "analysis": result.analysis}


@app.get("/api/user/budget")
def api_get_budget(
    identity: Identity = Depends(current_identity),
    db: Session = Depends(get_db),
):
    return UserService(db, identity.uid).budget_summary(local_today())


@app.put("/api/user/budget")
def api_set_budget(
    data: BudgetIn,
    identity: Identity = Depends(current_identity),
    db: Session = Depends(get_db),
):
    UserService(db, identity.uid).set_budget(data.monthly_budget)
    return {"status": "success", "message": "Budget updated"}


@app.post("/api/save-token")
def api_save_token(
    data: PushTokenIn,
    identity: Identity = Depends(current_identity),
    db: Session = Depends(get_db),
):
    try:
        UserService(db, identity.uid).save_push_token(data.push_token)
    except InvoiceValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"status": "success", "message": "Token saved"}


@app.post("/api/find-deals")
def api_find_deals(
    data: DealsIn,
    identity: Identity = Depends(current_identity),
    deal_finder: DealFinder = Depends(get_deal_finder),
):
    try:
        deal = DealsService(deal_finder).find_deals(data)
    except InvoiceValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"deal": deal}


@app.get("/api/chart-data")
def api_chart_data(
    request: Request,
    identity: Identity = Depends(current_identity),
    db: Session = Depends(get_db),
):
    range_slug = request.query_params.get("range", "week")
    try:
        offset = int(request.query_params.get("offset", "0"))
        window = resolve_chart_window(range_slug, offset, today=local_today())
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return InvoiceService(db, identity.uid).chart(window)
