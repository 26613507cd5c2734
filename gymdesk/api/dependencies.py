"""
Shared dependencies and state for the API.

Routers get the data store and the in-flight import registry from here, so
tests can swap them out with ``app.dependency_overrides``.
"""
from typing import Optional

from fastapi import Depends, HTTPException

from gymdesk.db.session import get_engine
from gymdesk.db.store import DataStore, SqlDataStore
from gymdesk.domain.imports.service import ImportRunRegistry, MemberImportService
from gymdesk.domain.tenancy.scope import TenantScope

# Process-wide; cancel requests arrive on a different request than the import.
run_registry = ImportRunRegistry()

_data_store: Optional[DataStore] = None


def get_data_store() -> DataStore:
    global _data_store
    if _data_store is None:
        _data_store = SqlDataStore(get_engine())
    return _data_store


def get_run_registry() -> ImportRunRegistry:
    return run_registry


def tenant_scope(subaccount_id: Optional[str]) -> TenantScope:
    """
    Build a single-franchise scope from a request parameter.

    Raises:
        HTTPException: 400 when no subaccount id was supplied
    """
    if not subaccount_id or not subaccount_id.strip():
        raise HTTPException(status_code=400, detail="subaccount_id is required")
    return TenantScope.single(subaccount_id.strip())


def build_import_service(
    subaccount_id: Optional[str],
    store: DataStore = Depends(get_data_store),
    registry: ImportRunRegistry = Depends(get_run_registry),
) -> MemberImportService:
    return MemberImportService(store.scoped(tenant_scope(subaccount_id)), registry=registry)
