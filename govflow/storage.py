"""Persistence: a local JSON cache mirrored, best effort, to Firestore.

Writes land in the local cache first and are then pushed to the remote store;
remote failures are logged and never raised. Reads prefer the remote store and
fall back to the local cache when it is unavailable.
"""
from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Type, TypeVar

from pydantic import BaseModel

from govflow.models import ImportErrorLog, Invoice, Supplier, SystemSetting, User
from govflow.users import DEFAULT_ADMIN_EMAIL, default_admin, find_by_email

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

INVOICES = "invoices"
SUPPLIERS = "suppliers"
USERS = "users"
IMPORT_ERRORS = "import_errors"
SETTINGS = "settings"

MAX_LOCAL_IMPORT_ERRORS = 100

DEFAULT_SETTINGS: list[SystemSetting] = [
    SystemSetting(key="system_name", value="GovFlow Pro"),
    SystemSetting(key="system_slogan", value="Portal de Gestão de Finanças Públicas"),
    SystemSetting(key="footer_text", value="Sistema restrito para servidores autorizados."),
    SystemSetting(key="ai_enabled", value="true"),
]


def _get_env(name: str) -> Optional[str]:
    value = os.getenv(name)
    return value.strip() if value else None


class LocalStore:
    """One JSON file per collection under *directory*."""

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)

    def _path(self, collection: str) -> Path:
        return self.directory / f"{collection}.json"

    def load(self, collection: str) -> list[Dict[str, Any]]:
        path = self._path(collection)
        if not path.exists():
            return []
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            logger.warning("Unreadable local collection %s; treating as empty", path)
            return []
        return data if isinstance(data, list) else []

    def dump(self, collection: str, records: list[Dict[str, Any]]) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        tmp = self._path(collection).with_suffix(".json.tmp")
        tmp.write_text(json.dumps(records, ensure_ascii=False, indent=2), encoding="utf-8")
        tmp.replace(self._path(collection))


class FirestoreMirror:
    def __init__(self, client: Any = None, prefix: Optional[str] = None) -> None:
        if client is None:
            from google.cloud import firestore

            client = firestore.Client(database=_get_env("FIRESTORE_DATABASE"))
        self.client = client
        self.prefix = prefix if prefix is not None else (_get_env("FIRESTORE_PREFIX") or "govflow_")

    def _collection(self, name: str) -> Any:
        return self.client.collection(f"{self.prefix}{name}")

    def list(self, collection: str) -> list[Dict[str, Any]]:
        return [doc.to_dict() or {} for doc in self._collection(collection).stream()]

    def upsert(self, collection: str, doc_id: str, record: Dict[str, Any]) -> None:
        self._collection(collection).document(doc_id).set(record, merge=True)

    def delete(self, collection: str, doc_id: str) -> None:
        self._collection(collection).document(doc_id).delete()

    def clear(self, collection: str) -> None:
        for doc in self._collection(collection).stream():
            doc.reference.delete()


def _dump(model: BaseModel) -> Dict[str, Any]:
    return model.model_dump(mode="json")


class DataService:
    def __init__(self, local: LocalStore, remote: Optional[FirestoreMirror] = None) -> None:
        self.local = local
        self.remote = remote

    # ------------------------------------------------------------------
    # generic helpers
    # ------------------------------------------------------------------

    def _read(self, collection: str, model: Type[ModelT]) -> list[ModelT]:
        records: Optional[list[Dict[str, Any]]] = None
        if self.remote is not None:
            try:
                records = self.remote.list(collection)
            except Exception as exc:
                logger.warning("Remote read of %s failed, using local cache: %s", collection, exc)
        if records is None:
            records = self.local.load(collection)

        items: list[ModelT] = []
        for record in records:
            try:
                items.append(model.model_validate(record))
            except ValueError as exc:
                logger.warning("Skipping invalid %s record: %s", collection, exc)
        return items

    def _remote_call(self, action: str, collection: str, fn: Callable[[], None]) -> None:
        if self.remote is None:
            return
        try:
            fn()
        except Exception:
            logger.exception("Remote %s on %s failed; local cache kept", action, collection)

    def _upsert(self, collection: str, doc_id: str, record: Dict[str, Any], key: str = "id") -> None:
        current = self.local.load(collection)
        for idx, existing in enumerate(current):
            if existing.get(key) == doc_id:
                current[idx] = record
                break
        else:
            current.insert(0, record)
        self.local.dump(collection, current)
        self._remote_call("upsert", collection, lambda: self.remote.upsert(collection, doc_id, record))

    def _delete(self, collection: str, doc_id: str, key: str = "id") -> None:
        current = self.local.load(collection)
        self.local.dump(collection, [r for r in current if r.get(key) != doc_id])
        self._remote_call("delete", collection, lambda: self.remote.delete(collection, doc_id))

    def _clear(self, collection: str) -> None:
        self.local.dump(collection, [])
        self._remote_call("clear", collection, lambda: self.remote.clear(collection))

    # ------------------------------------------------------------------
    # invoices
    # ------------------------------------------------------------------

    def list_invoices(self) -> list[Invoice]:
        return sorted(self._read(INVOICES, Invoice), key=lambda i: i.due_date)

    def get_invoice(self, invoice_id: str) -> Optional[Invoice]:
        for invoice in self._read(INVOICES, Invoice):
            if invoice.id == invoice_id:
                return invoice
        return None

    def save_invoice(self, invoice: Invoice) -> None:
        self._upsert(INVOICES, invoice.id, _dump(invoice))

    def delete_invoice(self, invoice_id: str) -> None:
        self._delete(INVOICES, invoice_id)

    def delete_all_invoices(self) -> None:
        self._clear(INVOICES)

    # ------------------------------------------------------------------
    # suppliers
    # ------------------------------------------------------------------

    def list_suppliers(self) -> list[Supplier]:
        return sorted(self._read(SUPPLIERS, Supplier), key=lambda s: s.legal_name.lower())

    def get_supplier(self, supplier_id: str) -> Optional[Supplier]:
        for supplier in self._read(SUPPLIERS, Supplier):
            if supplier.id == supplier_id:
                return supplier
        return None

    def save_supplier(self, supplier: Supplier) -> None:
        self._upsert(SUPPLIERS, supplier.id, _dump(supplier))

    def delete_supplier(self, supplier_id: str) -> None:
        self._delete(SUPPLIERS, supplier_id)

    # ------------------------------------------------------------------
    # users
    # ------------------------------------------------------------------

    def list_users(self) -> list[User]:
        return self._read(USERS, User)

    def get_user(self, user_id: str) -> Optional[User]:
        for user in self._read(USERS, User):
            if user.id == user_id:
                return user
        return None

    def save_user(self, user: User) -> None:
        self._upsert(USERS, user.id, _dump(user))

    def delete_user(self, user_id: str) -> None:
        self._delete(USERS, user_id)

    # ------------------------------------------------------------------
    # import error log
    # ------------------------------------------------------------------

    def list_import_errors(self) -> list[ImportErrorLog]:
        return sorted(self._read(IMPORT_ERRORS, ImportErrorLog), key=lambda e: e.date, reverse=True)

    def save_import_error(self, log: ImportErrorLog) -> None:
        record = _dump(log)
        current = self.local.load(IMPORT_ERRORS)
        current.insert(0, record)
        self.local.dump(IMPORT_ERRORS, current[:MAX_LOCAL_IMPORT_ERRORS])
        self._remote_call("insert", IMPORT_ERRORS, lambda: self.remote.upsert(IMPORT_ERRORS, log.id, record))

    def clear_import_errors(self) -> None:
        self._clear(IMPORT_ERRORS)

    # ------------------------------------------------------------------
    # settings
    # ------------------------------------------------------------------

    def get_settings(self) -> list[SystemSetting]:
        settings = self._read(SETTINGS, SystemSetting)
        if not settings:
            settings = self.local_settings()
        return settings

    def local_settings(self) -> list[SystemSetting]:
        stored = [SystemSetting.model_validate(r) for r in self.local.load(SETTINGS)]
        return stored or [s.model_copy() for s in DEFAULT_SETTINGS]

    def get_setting(self, key: str, default: str = "") -> str:
        for setting in self.get_settings():
            if setting.key == key:
                return setting.value
        return default

    def save_settings(self, settings: list[SystemSetting]) -> None:
        merged = {s.key: s for s in self.local_settings()}
        for setting in settings:
            merged[setting.key] = setting
        self.local.dump(SETTINGS, [_dump(s) for s in merged.values()])
        for setting in settings:
            self._remote_call(
                "upsert", SETTINGS, lambda s=setting: self.remote.upsert(SETTINGS, s.key, _dump(s))
            )

    # ------------------------------------------------------------------
    # bootstrap
    # ------------------------------------------------------------------

    def seed(self) -> None:
        """Make sure the default administrator and settings exist."""
        local_users = [User.model_validate(r) for r in self.local.load(USERS)]
        if find_by_email(local_users, DEFAULT_ADMIN_EMAIL) is None:
            admin = default_admin()
            logger.info("Seeding default administrator %s", admin.email)
            self._upsert(USERS, admin.id, _dump(admin))
        elif self.remote is not None:
            if find_by_email(self.list_users(), DEFAULT_ADMIN_EMAIL) is None:
                admin = find_by_email(local_users, DEFAULT_ADMIN_EMAIL)
                self._remote_call("upsert", USERS, lambda: self.remote.upsert(USERS, admin.id, _dump(admin)))

        if not self.local.load(SETTINGS):
            self.save_settings([s.model_copy() for s in DEFAULT_SETTINGS])


def build_data_service(data_dir: Optional[str] = None, firestore_enabled: bool = False) -> DataService:
    directory = data_dir or _get_env("GOVFLOW_DATA_DIR") or "./data"
    remote = FirestoreMirror() if firestore_enabled else None
    return DataService(LocalStore(directory), remote)
