"""HTTP tests for the FastAPI app against a temporary local store."""

import base64
from datetime import date, timedelta
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

import main
from govflow.models import ImportCandidate, SupplierPayload
from govflow.storage import DataService, LocalStore

FIXTURES_DIR = Path(__file__).parent / "fixtures"


def _auth(email: str, password: str) -> dict:
    token = base64.b64encode(f"{email}:{password}".encode("utf-8")).decode("ascii")
    return {"Authorization": f"Basic {token}"}


ADMIN = _auth("admin@gov.br", "admin123")


@pytest.fixture
def service(tmp_path, monkeypatch):
    svc = DataService(LocalStore(tmp_path / "data"))
    svc.seed()
    monkeypatch.setattr(main, "_service", svc)
    return svc


@pytest.fixture
def client(service):
    return TestClient(main.app)


def _create_user(client, email, role, password="senha123"):
    resp = client.post(
        "/users",
        json={"name": email.split("@")[0], "email": email, "password": password, "role": role},
        headers=ADMIN,
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


def _create_invoice(client, **overrides):
    form = {
        "budget_unit": "SAÚDE",
        "supplier": "MED CORP",
        "invoice_number": "10293",
        "amount": "1.000,00",
        "due_date": (date.today() + timedelta(days=5)).isoformat(),
    }
    form.update(overrides)
    resp = client.post("/invoices", json=form, headers=ADMIN)
    assert resp.status_code == 201, resp.text
    return resp.json()


# ---------------------------------------------------------------------------
# Liveness and auth
# ---------------------------------------------------------------------------

def test_health_is_public(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_invoices_require_auth(client):
    resp = client.get("/invoices")
    assert resp.status_code == 401
    assert "Basic" in resp.headers["www-authenticate"]


def test_bad_password_rejected(client):
    assert client.get("/invoices", headers=_auth("admin@gov.br", "errada")).status_code == 401


def test_me_hides_password_hash(client):
    body = client.get("/me", headers=ADMIN).json()
    assert body["email"] == "admin@gov.br"
    assert "password_hash" not in body


def test_last_login_written_once_per_session(client, service, monkeypatch):
    saved = []
    original = service.save_user

    def counting_save(user):
        saved.append(user.id)
        original(user)

    monkeypatch.setattr(service, "save_user", counting_save)
    client.get("/me", headers=ADMIN)
    client.get("/invoices", headers=ADMIN)
    client.get("/dashboard", headers=ADMIN)
    assert saved == ["master-admin-001"]
    assert service.get_user("master-admin-001").last_login is not None


def test_corrupt_stored_hash_is_401(client, service):
    admin = service.get_user("master-admin-001")
    service.save_user(admin.model_copy(update={"password_hash": "pbkdf2_sha256$1000$zz$aa"}))
    assert client.get("/me", headers=ADMIN).status_code == 401


# ---------------------------------------------------------------------------
# Invoices
# ---------------------------------------------------------------------------

def test_create_and_list_invoice(client):
    created = _create_invoice(client)
    assert created["amount"] == 1000.0
    assert created["history"][0]["user"] == "Administrador do Sistema"

    listed = client.get("/invoices", headers=ADMIN).json()
    assert listed["count"] == 1


def test_create_invoice_validation_error(client):
    resp = client.post("/invoices", json={"invoice_number": "", "amount": 10}, headers=ADMIN)
    assert resp.status_code == 400


def test_toggle_and_cancel(client):
    invoice = _create_invoice(client)
    toggled = client.post(f"/invoices/{invoice['id']}/toggle-status", headers=ADMIN).json()
    assert toggled["status"] == "PAID"
    assert toggled["payment_date"] == date.today().isoformat()

    cancelled = client.post(f"/invoices/{invoice['id']}/cancel", headers=ADMIN).json()
    assert cancelled["status"] == "CANCELLED"
    assert len(cancelled["history"]) == 3

    resp = client.post(f"/invoices/{invoice['id']}/toggle-status", headers=ADMIN)
    assert resp.status_code == 400


def test_update_invoice(client):
    invoice = _create_invoice(client)
    resp = client.put(f"/invoices/{invoice['id']}", json={"supplier": "OUTRO"}, headers=ADMIN)
    assert resp.status_code == 200
    assert resp.json()["supplier"] == "OUTRO"


def test_missing_invoice_404(client):
    assert client.get("/invoices/nope", headers=ADMIN).status_code == 404


def test_filter_by_portuguese_status(client):
    _create_invoice(client)
    assert client.get("/invoices?status=PAGO", headers=ADMIN).json()["count"] == 0
    assert client.get("/invoices?status=NAO%20PAGO", headers=ADMIN).json()["count"] == 1
    assert client.get("/invoices?status=TALVEZ", headers=ADMIN).status_code == 400


def test_bulk_delete_admin_only(client):
    _create_invoice(client)
    _create_user(client, "gestor@gov.br", "MANAGER")
    manager = _auth("gestor@gov.br", "senha123")
    assert client.delete("/invoices", headers=manager).status_code == 403
    assert client.delete("/invoices", headers=ADMIN).status_code == 200
    assert client.get("/invoices", headers=ADMIN).json()["count"] == 0


def test_auditor_is_read_only(client):
    _create_user(client, "auditor@gov.br", "AUDITOR")
    auditor = _auth("auditor@gov.br", "senha123")
    assert client.get("/invoices", headers=auditor).status_code == 200
    resp = client.post("/invoices", json={"invoice_number": "1", "amount": 1}, headers=auditor)
    assert resp.status_code == 403


# ---------------------------------------------------------------------------
# Triage and dashboard
# ---------------------------------------------------------------------------

def test_reminders_and_notifications_agree(client):
    invoice = _create_invoice(client)
    today = date.today().isoformat()
    reminders = client.get(f"/reminders?on={today}", headers=ADMIN).json()
    notifications = client.get(f"/notifications?on={today}", headers=ADMIN).json()
    assert [i["invoice"]["id"] for i in reminders["warning"]] == [invoice["id"]]
    assert reminders == notifications
    assert notifications["total_pending"] == 1


def test_reminders_invalid_date(client):
    assert client.get("/reminders?on=10/03/2026", headers=ADMIN).status_code == 400


def test_dashboard_totals(client):
    _create_invoice(client, amount="100")
    paid = _create_invoice(client, amount="50")
    client.post(f"/invoices/{paid['id']}/toggle-status", headers=ADMIN)
    stats = client.get("/dashboard", headers=ADMIN).json()
    assert stats["total_open"] == 100.0
    assert stats["total_paid"] == 50.0


# ---------------------------------------------------------------------------
# Import
# ---------------------------------------------------------------------------

def test_import_text_with_mocked_extraction(client, monkeypatch):
    candidates = [
        ImportCandidate(supplier="MED CORP", amount=1.0, supplier_data=SupplierPayload(tax_id="12.345/0001-99")),
        ImportCandidate(supplier="MED CORP", amount=2.0, supplier_data=SupplierPayload(tax_id="12.345/0001-99")),
        ImportCandidate(amount=3.0),
    ]
    monkeypatch.setattr("govflow.importer.extract_candidates", lambda text: candidates)
    resp = client.post("/import", json={"text": "MED CORP ..."}, headers=ADMIN)
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["imported"] == 3
    assert body["new_supplier_count"] == 1
    assert len(client.get("/suppliers", headers=ADMIN).json()["suppliers"]) == 1


def test_import_extraction_failure_is_502_and_logged(client, monkeypatch):
    from govflow.extraction import ExtractionError

    def boom(text):
        raise ExtractionError("quota")

    monkeypatch.setattr("govflow.importer.extract_candidates", boom)
    resp = client.post("/import", json={"text": "algo", "file_name": "lote.csv"}, headers=ADMIN)
    assert resp.status_code == 502
    errors = client.get("/import-errors", headers=ADMIN).json()["errors"]
    assert errors[0]["error_type"] == "AI_FAILURE"
    assert errors[0]["file_name"] == "lote.csv"


def test_import_ai_disabled_is_503(client):
    client.put("/settings", json={"ai_enabled": "false"}, headers=ADMIN)
    assert client.post("/import", json={"text": "algo"}, headers=ADMIN).status_code == 503


def test_import_nfe_file(client):
    raw = (FIXTURES_DIR / "nfe_medcorp.xml").read_bytes()
    resp = client.post(
        "/import/file?file_name=nfe.xml",
        content=raw,
        headers={**ADMIN, "Content-Type": "application/xml"},
    )
    assert resp.status_code == 200, resp.text
    assert resp.json()["source"] == "nfe"
    suppliers = client.get("/suppliers?q=12345678", headers=ADMIN).json()["suppliers"]
    assert len(suppliers) == 1


# ---------------------------------------------------------------------------
# Suppliers, users, settings
# ---------------------------------------------------------------------------

def test_supplier_crud(client):
    created = client.post(
        "/suppliers", json={"legal_name": "PAPELARIA LTDA", "tax_id": "11.111.111/0001-11"}, headers=ADMIN
    )
    assert created.status_code == 201
    supplier_id = created.json()["id"]

    updated = client.put(f"/suppliers/{supplier_id}", json={"city": "CAMPINAS"}, headers=ADMIN).json()
    assert updated["city"] == "CAMPINAS"
    assert updated["legal_name"] == "PAPELARIA LTDA"

    assert client.delete(f"/suppliers/{supplier_id}", headers=ADMIN).status_code == 200
    assert client.get("/suppliers", headers=ADMIN).json()["suppliers"] == []


def test_supplier_requires_legal_name(client):
    assert client.post("/suppliers", json={"tax_id": "1"}, headers=ADMIN).status_code == 400


def test_admin_cannot_delete_self(client):
    me = client.get("/me", headers=ADMIN).json()
    assert client.delete(f"/users/{me['id']}", headers=ADMIN).status_code == 400


def test_duplicate_user_email_rejected(client):
    _create_user(client, "gestor@gov.br", "MANAGER")
    resp = client.post(
        "/users", json={"name": "x", "email": "GESTOR@gov.br", "password": "y"}, headers=ADMIN
    )
    assert resp.status_code == 400


def test_settings_update_admin_only(client):
    _create_user(client, "gestor@gov.br", "MANAGER")
    manager = _auth("gestor@gov.br", "senha123")
    assert client.put("/settings", json={"system_name": "X"}, headers=manager).status_code == 403
    body = client.put("/settings", json={"system_name": "Portal NF"}, headers=ADMIN).json()
    assert {"key": "system_name", "value": "Portal NF"} in body["settings"]
