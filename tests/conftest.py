"""
Pytest configuration and fixtures for gymdesk tests.

Every test gets its own SQLite database with the full schema, a seeded
account with two franchises (plus an unrelated account), in-memory file
storage in place of the S3 bucket, and import batches with no delay.
"""

import os

# The app must not try to reach the configured database when imported by tests.
os.environ["SKIP_DB_INIT"] = "1"

from datetime import date, datetime
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine

from gymdesk.api.dependencies import get_data_store, get_run_registry
from gymdesk.core.config import settings
from gymdesk.db.session import ensure_tables
from gymdesk.db.store import SqlDataStore
from gymdesk.domain.imports.service import ImportRunRegistry
from gymdesk.domain.tenancy.scope import TenantScope
from gymdesk.integrations.storage import StorageDownloadError


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'gymdesk.db'}",
        connect_args={"check_same_thread": False},
    )
    ensure_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def store(engine):
    return SqlDataStore(engine)


@pytest.fixture(autouse=True)
def fast_imports(monkeypatch):
    """No pause between import batches and quick polling."""
    monkeypatch.setattr(settings, "import_batch_delay_seconds", 0)
    monkeypatch.setattr(settings, "import_poll_interval_seconds", 0.01)


class FakeStorage:
    """Keeps uploaded import files in memory."""

    def __init__(self):
        self.objects = {}

    def upload_file(self, file_content, file_name, folder="member-imports"):
        file_path = f"{folder}/{file_name}"
        self.objects[file_path] = file_content
        return {
            "file_id": file_path,
            "file_name": file_name,
            "file_path": file_path,
            "size": len(file_content),
        }

    def download_file(self, file_path):
        if file_path not in self.objects:
            raise StorageDownloadError(f"File not found: {file_path}")
        return self.objects[file_path]

    def get_file_url(self, file_path):
        return f"https://files.example.test/{file_path}"


@pytest.fixture(autouse=True)
def fake_storage(monkeypatch):
    storage = FakeStorage()
    monkeypatch.setattr("gymdesk.domain.imports.service.upload_file", storage.upload_file)
    monkeypatch.setattr("gymdesk.domain.imports.service.download_file", storage.download_file)
    monkeypatch.setattr("gymdesk.domain.imports.service.get_file_url", storage.get_file_url)
    return storage


@pytest.fixture
def seed(store):
    """
    Account ``acc-1`` (INR) owns franchises Andheri (``sub-a``) and Bandra
    (``sub-b``); account ``acc-2`` has no currency and one franchise ``sub-x``.
    """
    store.insert("currency", {"id": "cur-inr", "name": "Indian Rupee", "symbol": "₹", "code": "INR"})

    store.insert("accounts", {"id": "acc-1", "name": "Iron Works", "currency_id": "cur-inr"})
    store.insert("accounts", {"id": "acc-2", "name": "Elsewhere Fitness"})

    store.insert("subaccounts", {"id": "sub-a", "account_id": "acc-1", "name": "Andheri"})
    store.insert("subaccounts", {"id": "sub-b", "account_id": "acc-1", "name": "Bandra"})
    store.insert("subaccounts", {"id": "sub-x", "account_id": "acc-2", "name": "Elsewhere"})

    store.insert("user_accounts", {"user_id": "user-owner", "account_id": "acc-1", "subaccount_id": "sub-a", "is_owner": True})
    store.insert("user_accounts", {"user_id": "user-staff", "account_id": "acc-1", "subaccount_id": "sub-a", "is_owner": False})

    store.insert("plans", {"id": "plan-monthly", "subaccount_id": "sub-a", "name": "Monthly", "duration": 30, "price": 1000})
    store.insert("plans", {"id": "plan-quarterly", "subaccount_id": "sub-a", "name": "Quarterly", "duration": 90, "price": 2700})
    store.insert("plans", {"id": "plan-b-monthly", "subaccount_id": "sub-b", "name": "Monthly", "duration": 30, "price": 1200})

    store.insert("payment_methods", {"id": "pm-cash", "name": "Cash"})
    store.insert("payment_methods", {"id": "pm-upi", "name": "UPI"})

    members = [
        {"id": "m-a1", "subaccount_id": "sub-a", "name": "Asha", "gender": "female", "join_date": date(2024, 1, 5), "is_active": True, "active_plan": "plan-monthly"},
        {"id": "m-a2", "subaccount_id": "sub-a", "name": "Arjun", "gender": "Male", "join_date": date(2023, 11, 20), "is_active": False, "active_plan": "plan-quarterly"},
        {"id": "m-a3", "subaccount_id": "sub-a", "name": "Anon", "join_date": date(2024, 2, 10), "is_active": False},
        {"id": "m-b1", "subaccount_id": "sub-b", "name": "Bela", "gender": "non-binary", "join_date": date(2024, 1, 15), "is_active": True, "active_plan": "plan-b-monthly"},
        {"id": "m-x1", "subaccount_id": "sub-x", "name": "Xavier", "join_date": date(2024, 1, 1), "is_active": True},
    ]
    for member in members:
        store.insert("members", member)

    payments = [
        {"id": "p-1", "member_id": "m-a1", "plan_id": "plan-monthly", "amount": 120, "discount": 20, "final_amount": 100, "paid_at": datetime(2024, 1, 10, 9, 30), "payment_method_id": "pm-cash"},
        {"id": "p-2", "member_id": "m-a2", "plan_id": "plan-quarterly", "amount": 50, "paid_at": datetime(2024, 1, 20, 18, 0), "payment_method_id": "pm-upi"},
        {"id": "p-3", "member_id": "m-b1", "plan_id": "plan-b-monthly", "amount": 200, "discount": 20, "final_amount": 180, "paid_at": datetime(2024, 2, 5, 11, 0), "payment_method_id": "pm-upi"},
        {"id": "p-4", "member_id": "m-x1", "amount": 999, "paid_at": datetime(2024, 1, 11, 8, 0)},
        {"id": "p-5", "member_id": "m-a1", "plan_id": "plan-monthly", "amount": 70, "paid_at": datetime(2023, 12, 1, 8, 0)},
    ]
    for payment in payments:
        store.insert("payments", payment)

    expenses = [
        {"id": "e-1", "subaccount_id": "sub-a", "description": "Rent", "category": "Rent", "amount": 40, "created_at": datetime(2024, 1, 15, 12, 0)},
        {"id": "e-2", "subaccount_id": "sub-a", "description": "Cleaning", "category": None, "amount": 10, "created_at": datetime(2024, 2, 3, 12, 0)},
        {"id": "e-3", "subaccount_id": "sub-b", "description": "Dumbbells", "category": "Equipment", "amount": 30, "created_at": datetime(2024, 2, 10, 12, 0)},
        {"id": "e-4", "subaccount_id": "sub-x", "description": "Rent", "category": "Rent", "amount": 500, "created_at": datetime(2024, 1, 10, 12, 0)},
    ]
    for expense in expenses:
        store.insert("expenses", expense)

    return SimpleNamespace(
        account_id="acc-1",
        other_account_id="acc-2",
        andheri="sub-a",
        bandra="sub-b",
        elsewhere="sub-x",
        owner="user-owner",
        staff="user-staff",
    )


@pytest.fixture
def andheri_store(store, seed):
    return store.scoped(TenantScope.single(seed.andheri))


@pytest.fixture
def run_registry():
    return ImportRunRegistry()


@pytest.fixture
def client(store, run_registry):
    from gymdesk.main import app

    app.dependency_overrides[get_data_store] = lambda: store
    app.dependency_overrides[get_run_registry] = lambda: run_registry
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
