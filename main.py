from __future__ import annotations

import base64
import logging
import os
from datetime import date, datetime
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Request, status

from govflow.dashboard import InvoiceFilters, apply_filters, compute_stats
from govflow.extraction import ExtractionError, generate_financial_insights
from govflow.importer import AIDisabledError, ImportFailed, ImportResult, ai_enabled, import_document, import_text
from govflow.invoices import InvoiceValidationError, cancel_invoice, create_invoice, toggle_status, update_invoice
from govflow.models import Invoice, InvoiceStatus, Supplier, SystemSetting, User
from govflow.parse_utils import normalize_status
from govflow.reconcile import new_id
from govflow.storage import DataService, build_data_service
from govflow.triage import notification_list, reminder_panel
from govflow.users import authenticate, can_edit, find_by_email, has_role, hash_password, should_record_login


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("govflow")

APP_VERSION = os.getenv("APP_VERSION", "0.1.0")
MAX_REQUEST_BYTES = os.getenv("MAX_REQUEST_BYTES")
FIRESTORE_ENABLED = os.getenv("FIRESTORE_ENABLED", "").lower() in {"1", "true", "yes", "on"}
BASIC_AUTH_REALM = os.getenv("BASIC_AUTH_REALM", "GovFlow")

app = FastAPI()

_service: Optional[DataService] = None


def _data_service() -> DataService:
    global _service
    if _service is None:
        _service = build_data_service(firestore_enabled=FIRESTORE_ENABLED)
        _service.seed()
    return _service


@app.get("/version")
async def version() -> Dict[str, Any]:
    return {
        "status": "ok",
        "revision": os.getenv("K_REVISION"),
        "service": os.getenv("K_SERVICE"),
        "app_version": APP_VERSION,
    }


@app.get("/health")
async def health() -> Dict[str, str]:
    return {"status": "ok"}


# ---------------------------------------------------------------------------
# Request guards
# ---------------------------------------------------------------------------

def _max_request_bytes() -> Optional[int]:
    if not MAX_REQUEST_BYTES:
        return None
    try:
        return int(MAX_REQUEST_BYTES)
    except ValueError:
        logger.warning("Invalid MAX_REQUEST_BYTES value: %s", MAX_REQUEST_BYTES)
        return None


def _enforce_request_size(request: Request) -> None:
    limit = _max_request_bytes()
    if not limit:
        return
    content_length = request.headers.get("content-length")
    if content_length and content_length.isdigit() and int(content_length) > limit:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail="Request too large",
        )


def _unauthorized() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Unauthorized",
        headers={"WWW-Authenticate": f'Basic realm="{BASIC_AUTH_REALM}"'},
    )


def _current_user(request: Request) -> User:
    auth_header = request.headers.get("authorization")
    if not auth_header or not auth_header.lower().startswith("basic "):
        raise _unauthorized()

    token = auth_header.split(" ", 1)[1].strip()
    try:
        decoded = base64.b64decode(token).decode("utf-8")
    except (ValueError, UnicodeDecodeError):
        raise _unauthorized()

    if ":" not in decoded:
        raise _unauthorized()

    email, password = decoded.split(":", 1)
    service = _data_service()
    users = service.list_users()
    user = authenticate(users, email, password)
    if user is None:
        logger.info("Rejected login for %s", email)
        raise _unauthorized()
    stored = find_by_email(users, email)
    if should_record_login(stored.last_login if stored else None, user.last_login):
        service.save_user(user)
    return user


def _require_editor(request: Request) -> User:
    user = _current_user(request)
    if not can_edit(user):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Read-only profile")
    return user


def _require_admin(request: Request) -> User:
    user = _current_user(request)
    if not has_role(user, "ADMIN"):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Administrator only")
    return user


async def _json_object(request: Request) -> Dict[str, Any]:
    try:
        payload = await request.json()
    except Exception as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON payload") from exc
    if not isinstance(payload, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="JSON payload must be an object")
    return payload


def _filters(
    budget_unit: Optional[str],
    supplier: Optional[str],
    status_filter: Optional[str],
    due_month: Optional[int],
) -> InvoiceFilters:
    invoice_status: Optional[InvoiceStatus] = None
    if status_filter:
        invoice_status = normalize_status(status_filter)
        if invoice_status is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unknown status: {status_filter}")
    if due_month is not None and not 1 <= due_month <= 12:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="due_month must be 1-12")
    return InvoiceFilters(
        budget_unit=budget_unit or "",
        supplier=supplier or "",
        status=invoice_status,
        due_month=due_month,
    )


def _get_invoice_or_404(invoice_id: str) -> Invoice:
    invoice = _data_service().get_invoice(invoice_id)
    if invoice is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Invoice not found")
    return invoice


def _dump(model: Any) -> Dict[str, Any]:
    return model.model_dump(mode="json")


def _user_view(user: User) -> Dict[str, Any]:
    return user.model_dump(mode="json", exclude={"password_hash"})


# ---------------------------------------------------------------------------
# Invoices
# ---------------------------------------------------------------------------

@app.get("/invoices")
async def list_invoices(
    request: Request,
    budget_unit: Optional[str] = None,
    supplier: Optional[str] = None,
    status: Optional[str] = None,
    due_month: Optional[int] = None,
) -> Dict[str, Any]:
    _current_user(request)
    filters = _filters(budget_unit, supplier, status, due_month)
    invoices = apply_filters(_data_service().list_invoices(), filters)
    return {"invoices": [_dump(i) for i in invoices], "count": len(invoices)}


@app.post("/invoices", status_code=201)
async def create_invoice_endpoint(request: Request) -> Dict[str, Any]:
    user = _require_editor(request)
    form = await _json_object(request)
    try:
        invoice = create_invoice(form, user)
    except InvoiceValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    _data_service().save_invoice(invoice)
    logger.info("Invoice %s created by %s", invoice.id, user.email)
    return _dump(invoice)


@app.get("/invoices/{invoice_id}")
async def get_invoice(request: Request, invoice_id: str) -> Dict[str, Any]:
    _current_user(request)
    return _dump(_get_invoice_or_404(invoice_id))


@app.put("/invoices/{invoice_id}")
async def update_invoice_endpoint(request: Request, invoice_id: str) -> Dict[str, Any]:
    user = _require_editor(request)
    form = await _json_object(request)
    invoice = _get_invoice_or_404(invoice_id)
    try:
        updated = update_invoice(invoice, form, user)
    except InvoiceValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    _data_service().save_invoice(updated)
    return _dump(updated)


@app.post("/invoices/{invoice_id}/toggle-status")
async def toggle_invoice_status(request: Request, invoice_id: str) -> Dict[str, Any]:
    user = _require_editor(request)
    invoice = _get_invoice_or_404(invoice_id)
    try:
        updated = toggle_status(invoice, user)
    except InvoiceValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    _data_service().save_invoice(updated)
    return _dump(updated)


@app.post("/invoices/{invoice_id}/cancel")
async def cancel_invoice_endpoint(request: Request, invoice_id: str) -> Dict[str, Any]:
    user = _require_editor(request)
    updated = cancel_invoice(_get_invoice_or_404(invoice_id), user)
    _data_service().save_invoice(updated)
    return _dump(updated)


@app.delete("/invoices/{invoice_id}")
async def delete_invoice(request: Request, invoice_id: str) -> Dict[str, Any]:
    user = _require_editor(request)
    _get_invoice_or_404(invoice_id)
    _data_service().delete_invoice(invoice_id)
    logger.info("Invoice %s deleted by %s", invoice_id, user.email)
    return {"status": "deleted", "id": invoice_id}


@app.delete("/invoices")
async def delete_all_invoices(request: Request) -> Dict[str, Any]:
    user = _require_admin(request)
    _data_service().delete_all_invoices()
    logger.warning("All invoices deleted by %s", user.email)
    return {"status": "deleted"}


# ---------------------------------------------------------------------------
# Triage and dashboard
# ---------------------------------------------------------------------------

def _reference_date(on: Optional[str]) -> date:
    if not on:
        return date.today()
    try:
        return date.fromisoformat(on)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid date; expected YYYY-MM-DD") from exc


@app.get("/reminders")
async def reminders(request: Request, on: Optional[str] = None) -> Dict[str, Any]:
    _current_user(request)
    return _dump(reminder_panel(_data_service().list_invoices(), _reference_date(on)))


@app.get("/notifications")
async def notifications(request: Request, on: Optional[str] = None) -> Dict[str, Any]:
    _current_user(request)
    return _dump(notification_list(_data_service().list_invoices(), _reference_date(on)))


@app.get("/dashboard")
async def dashboard(
    request: Request,
    budget_unit: Optional[str] = None,
    supplier: Optional[str] = None,
    status: Optional[str] = None,
    due_month: Optional[int] = None,
) -> Dict[str, Any]:
    _current_user(request)
    filters = _filters(budget_unit, supplier, status, due_month)
    return _dump(compute_stats(apply_filters(_data_service().list_invoices(), filters)))


@app.post("/insights")
async def insights(
    request: Request,
    budget_unit: Optional[str] = None,
    supplier: Optional[str] = None,
    status: Optional[str] = None,
    due_month: Optional[int] = None,
) -> Dict[str, Any]:
    _current_user(request)
    service = _data_service()
    if not ai_enabled(service):
        raise HTTPException(status_code=503, detail="AI disabled")
    filters = _filters(budget_unit, supplier, status, due_month)
    try:
        text = generate_financial_insights(apply_filters(service.list_invoices(), filters))
    except ExtractionError as exc:
        logger.exception("Insights generation failed: %s", exc)
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return {"insights": text}


# ---------------------------------------------------------------------------
# Import
# ---------------------------------------------------------------------------

def _import_response(result: ImportResult) -> Dict[str, Any]:
    return {
        "status": "ok",
        "source": result.source,
        "imported": len(result.invoices),
        "new_supplier_count": result.new_supplier_count,
        "invoices": [_dump(i) for i in result.invoices],
        "new_suppliers": [_dump(s) for s in result.new_suppliers],
    }


def _import_error(exc: Exception) -> HTTPException:
    if isinstance(exc, AIDisabledError):
        return HTTPException(status_code=503, detail=str(exc))
    if isinstance(exc, ImportFailed):
        code = 502 if exc.log.error_type == "AI_FAILURE" else 400
        if exc.log.error_type == "SYSTEM":
            code = 500
        return HTTPException(status_code=code, detail={"error_type": exc.log.error_type, "message": str(exc)})
    return HTTPException(status_code=500, detail=str(exc))


@app.post("/import")
async def import_endpoint(request: Request) -> Dict[str, Any]:
    _enforce_request_size(request)
    user = _require_editor(request)
    payload = await _json_object(request)
    text = payload.get("text")
    if not isinstance(text, str):
        raise HTTPException(status_code=400, detail="Missing text")
    try:
        result = import_text(
            _data_service(),
            text,
            user,
            file_name=str(payload.get("file_name") or "texto colado"),
        )
    except (ImportFailed, AIDisabledError) as exc:
        raise _import_error(exc) from exc
    return _import_response(result)


@app.post("/import/file")
async def import_file_endpoint(request: Request, file_name: str = "upload") -> Dict[str, Any]:
    _enforce_request_size(request)
    user = _require_editor(request)
    raw = await request.body()
    if not raw:
        raise HTTPException(status_code=400, detail="Empty body")
    try:
        result = import_document(
            _data_service(),
            raw,
            user,
            file_name=file_name,
            content_type=request.headers.get("content-type"),
        )
    except (ImportFailed, AIDisabledError) as exc:
        raise _import_error(exc) from exc
    return _import_response(result)


@app.get("/import-errors")
async def list_import_errors(request: Request) -> Dict[str, Any]:
    _current_user(request)
    return {"errors": [_dump(e) for e in _data_service().list_import_errors()]}


@app.delete("/import-errors")
async def clear_import_errors(request: Request) -> Dict[str, Any]:
    _require_admin(request)
    _data_service().clear_import_errors()
    return {"status": "cleared"}


# ---------------------------------------------------------------------------
# Suppliers
# ---------------------------------------------------------------------------

def _supplier_from_payload(payload: Dict[str, Any], existing: Optional[Supplier] = None) -> Supplier:
    data: Dict[str, Any] = _dump(existing) if existing else {"id": new_id(), "registered_at": datetime.now()}
    data.update({k: v for k, v in payload.items() if k not in {"id", "registered_at"}})
    if not str(data.get("legal_name") or "").strip():
        raise HTTPException(status_code=400, detail="Missing legal_name")
    try:
        return Supplier.model_validate(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.get("/suppliers")
async def list_suppliers(request: Request, q: Optional[str] = None) -> Dict[str, Any]:
    _current_user(request)
    suppliers = _data_service().list_suppliers()
    if q and q.strip():
        term = q.strip().lower()
        suppliers = [
            s for s in suppliers
            if term in s.legal_name.lower() or term in s.trade_name.lower() or term in s.tax_id
        ]
    return {"suppliers": [_dump(s) for s in suppliers]}


@app.post("/suppliers", status_code=201)
async def create_supplier(request: Request) -> Dict[str, Any]:
    _require_editor(request)
    supplier = _supplier_from_payload(await _json_object(request))
    _data_service().save_supplier(supplier)
    return _dump(supplier)


@app.put("/suppliers/{supplier_id}")
async def update_supplier(request: Request, supplier_id: str) -> Dict[str, Any]:
    _require_editor(request)
    existing = _data_service().get_supplier(supplier_id)
    if existing is None:
        raise HTTPException(status_code=404, detail="Supplier not found")
    supplier = _supplier_from_payload(await _json_object(request), existing)
    _data_service().save_supplier(supplier)
    return _dump(supplier)


@app.delete("/suppliers/{supplier_id}")
async def delete_supplier(request: Request, supplier_id: str) -> Dict[str, Any]:
    _require_editor(request)
    if _data_service().get_supplier(supplier_id) is None:
        raise HTTPException(status_code=404, detail="Supplier not found")
    _data_service().delete_supplier(supplier_id)
    return {"status": "deleted", "id": supplier_id}


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

def _user_from_payload(payload: Dict[str, Any], existing: Optional[User] = None) -> User:
    data: Dict[str, Any] = _dump(existing) if existing else {"id": new_id()}
    password = payload.get("password")
    data.update({k: v for k, v in payload.items() if k not in {"id", "password", "password_hash", "last_login"}})
    if password:
        try:
            data["password_hash"] = hash_password(str(password))
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
    elif existing is None:
        raise HTTPException(status_code=400, detail="Missing password")
    if not str(data.get("email") or "").strip() or not str(data.get("name") or "").strip():
        raise HTTPException(status_code=400, detail="Missing name or email")
    try:
        return User.model_validate(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.get("/me")
async def me(request: Request) -> Dict[str, Any]:
    return _user_view(_current_user(request))


@app.get("/users")
async def list_users(request: Request) -> Dict[str, Any]:
    _require_admin(request)
    return {"users": [_user_view(u) for u in _data_service().list_users()]}


@app.post("/users", status_code=201)
async def create_user(request: Request) -> Dict[str, Any]:
    _require_admin(request)
    user = _user_from_payload(await _json_object(request))
    if find_by_email(_data_service().list_users(), user.email) is not None:
        raise HTTPException(status_code=400, detail="E-mail already registered")
    _data_service().save_user(user)
    return _user_view(user)


@app.put("/users/{user_id}")
async def update_user(request: Request, user_id: str) -> Dict[str, Any]:
    _require_admin(request)
    existing = _data_service().get_user(user_id)
    if existing is None:
        raise HTTPException(status_code=404, detail="User not found")
    user = _user_from_payload(await _json_object(request), existing)
    _data_service().save_user(user)
    return _user_view(user)


@app.delete("/users/{user_id}")
async def delete_user(request: Request, user_id: str) -> Dict[str, Any]:
    admin = _require_admin(request)
    if admin.id == user_id:
        raise HTTPException(status_code=400, detail="You cannot delete your own account")
    if _data_service().get_user(user_id) is None:
        raise HTTPException(status_code=404, detail="User not found")
    _data_service().delete_user(user_id)
    return {"status": "deleted", "id": user_id}


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

@app.get("/settings")
async def get_settings(request: Request) -> Dict[str, Any]:
    _current_user(request)
    return {"settings": [_dump(s) for s in _data_service().get_settings()]}


@app.put("/settings")
async def save_settings(request: Request) -> Dict[str, Any]:
    _require_admin(request)
    payload = await _json_object(request)
    settings = [SystemSetting(key=str(k), value=str(v)) for k, v in payload.items()]
    _data_service().save_settings(settings)
    return {"settings": [_dump(s) for s in _data_service().get_settings()]}
