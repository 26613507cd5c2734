"""
Table definitions for the gym/franchise schema.

The hosted backend owns these tables (and their row level security); the
definitions here mirror its shape so the data store can build queries and so
tests can stand the schema up on SQLite.
"""
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
)

metadata = MetaData()


def _uuid() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    # Stored naive, in UTC
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _id_column() -> Column:
    return Column("id", String(36), primary_key=True, default=_uuid)


def _created_at() -> Column:
    return Column("created_at", DateTime, nullable=False, default=_utcnow)


currency = Table(
    "currency",
    metadata,
    _id_column(),
    Column("name", String(100), nullable=False),
    Column("symbol", String(10), nullable=False),
    Column("code", String(10), nullable=False),
    _created_at(),
)

accounts = Table(
    "accounts",
    metadata,
    _id_column(),
    Column("name", String(255), nullable=False),
    Column("email", String(255)),
    Column("phone", String(50)),
    Column("onboarding_completed", Boolean, nullable=False, default=False),
    Column("currency_id", String(36), ForeignKey("currency.id")),
    _created_at(),
)

subaccounts = Table(
    "subaccounts",
    metadata,
    _id_column(),
    Column("account_id", String(36), ForeignKey("accounts.id"), nullable=False),
    Column("name", String(255), nullable=False),
    Column("location", String(255)),
    _created_at(),
)

user_accounts = Table(
    "user_accounts",
    metadata,
    _id_column(),
    Column("user_id", String(36), nullable=False),
    Column("account_id", String(36), ForeignKey("accounts.id"), nullable=False),
    Column("subaccount_id", String(36), ForeignKey("subaccounts.id")),
    Column("is_owner", Boolean, nullable=False, default=False),
    _created_at(),
)

plans = Table(
    "plans",
    metadata,
    _id_column(),
    Column("subaccount_id", String(36), ForeignKey("subaccounts.id"), nullable=False),
    Column("name", String(255), nullable=False),
    Column("description", Text),
    Column("duration", Integer, nullable=False, default=30),
    Column("price", Numeric(12, 2), nullable=False, default=0),
    Column("is_active", Boolean, nullable=False, default=True),
    _created_at(),
)

payment_methods = Table(
    "payment_methods",
    metadata,
    _id_column(),
    Column("name", String(100), nullable=False),
    Column("is_active", Boolean, nullable=False, default=True),
    _created_at(),
)

members = Table(
    "members",
    metadata,
    _id_column(),
    Column("subaccount_id", String(36), ForeignKey("subaccounts.id"), nullable=False),
    Column("name", String(255), nullable=False),
    Column("email", String(255)),
    Column("phone", String(50)),
    Column("gender", String(20)),
    Column("dob", Date),
    Column("join_date", Date, nullable=False),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("active_plan", String(36), ForeignKey("plans.id")),
    Column("last_payment", Date),
    Column("next_payment", Date),
    _created_at(),
)

payments = Table(
    "payments",
    metadata,
    _id_column(),
    Column("member_id", String(36), ForeignKey("members.id"), nullable=False),
    Column("plan_id", String(36), ForeignKey("plans.id")),
    Column("amount", Numeric(12, 2), nullable=False),
    Column("discount", Numeric(12, 2), nullable=False, default=0),
    Column("final_amount", Numeric(12, 2)),
    Column("paid_at", DateTime, nullable=False),
    Column("payment_method_id", String(36), ForeignKey("payment_methods.id")),
    Column("notes", Text),
    _created_at(),
)

expenses = Table(
    "expenses",
    metadata,
    _id_column(),
    Column("subaccount_id", String(36), ForeignKey("subaccounts.id"), nullable=False),
    Column("description", String(500)),
    Column("category", String(100)),
    Column("amount", Numeric(12, 2), nullable=False),
    _created_at(),
)

member_imports = Table(
    "member_imports",
    metadata,
    _id_column(),
    Column("subaccount_id", String(36), ForeignKey("subaccounts.id"), nullable=False),
    Column("uploaded_by", String(36)),
    Column("file_name", String(500), nullable=False),
    Column("file_url", Text),
    Column("file_path", Text),
    Column("status", String(20), nullable=False, default="pending"),
    Column("total_rows", Integer, nullable=False, default=0),
    Column("processed_rows", Integer, nullable=False, default=0),
    Column("success_count", Integer, nullable=False, default=0),
    Column("error_count", Integer, nullable=False, default=0),
    Column("logs", JSON, nullable=False, default=lambda: []),
    Column("column_mapping", JSON, nullable=False, default=lambda: {}),
    Column("date_format", String(20)),
    _created_at(),
    Column("completed_at", DateTime),
)


# Relation embedding: collection -> {relation name: (target collection, local foreign key)}
RELATIONS = {
    "accounts": {"currency": ("currency", "currency_id")},
    "subaccounts": {"account": ("accounts", "account_id")},
    "user_accounts": {
        "account": ("accounts", "account_id"),
        "subaccount": ("subaccounts", "subaccount_id"),
    },
    "plans": {"subaccount": ("subaccounts", "subaccount_id")},
    "members": {
        "plan": ("plans", "active_plan"),
        "subaccount": ("subaccounts", "subaccount_id"),
    },
    "payments": {
        "member": ("members", "member_id"),
        "plan": ("plans", "plan_id"),
        "payment_method": ("payment_methods", "payment_method_id"),
    },
    "expenses": {"subaccount": ("subaccounts", "subaccount_id")},
    "member_imports": {"subaccount": ("subaccounts", "subaccount_id")},
}
