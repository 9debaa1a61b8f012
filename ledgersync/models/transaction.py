"""
Core Data Models for Ledger Sync

These models define the schemas for everything the local store persists
and everything exchanged with the remote spreadsheet endpoint.

DESIGN DECISION: Field names on the wire and in the persisted JSON are the
camelCase names the spreadsheet script and earlier clients already use.
Python code uses snake_case attributes; pydantic aliases bridge the two.
"""

import datetime as dt
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
)
from pydantic.alias_generators import to_camel


# Placeholder foreign key for rows the remote only knows by display name.
# Generated ids are always prefixed ("t_", "c_", "p_") or come from the
# bootstrap set, so this value can never collide with one of them.
UNRESOLVED_ID = "synced"
UNKNOWN_USER_ID = "unknown"

UNRESOLVED_IDS = frozenset({UNRESOLVED_ID, UNKNOWN_USER_ID})


def is_unresolved(entity_id: Optional[str]) -> bool:
    """True when a foreign key is a name-only placeholder rather than an id."""
    return not entity_id or entity_id in UNRESOLVED_IDS


def new_transaction_id() -> str:
    return f"t_{uuid4().hex}"


def new_category_id() -> str:
    return f"c_{uuid4().hex}"


def new_project_id() -> str:
    return f"p_{uuid4().hex}"


def now_millis() -> int:
    return int(dt.datetime.now(dt.timezone.utc).timestamp() * 1000)


# =============================================================================
# ENUMS
# =============================================================================

class Role(str, Enum):
    EMPLOYEE = "EMPLOYEE"
    MANAGER = "MANAGER"


class TransactionType(str, Enum):
    INCOME = "INCOME"
    EXPENSE = "EXPENSE"


class TransactionStatus(str, Enum):
    """
    Review workflow status.

    Only managers move a record forward: PENDING -> APPROVED -> BOOKED.
    A record never moves backwards through a local action.
    """
    PENDING = "PENDING"    # 待審核
    APPROVED = "APPROVED"  # 已審核
    BOOKED = "BOOKED"      # 已入帳

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]

    def can_advance_to(self, target: "TransactionStatus") -> bool:
        return target.rank > self.rank


_STATUS_RANK = {
    TransactionStatus.PENDING: 0,
    TransactionStatus.APPROVED: 1,
    TransactionStatus.BOOKED: 2,
}


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
    )

    def to_wire(self) -> dict:
        """Dump with camelCase keys, the shape persisted and sent remotely."""
        return self.model_dump(mode="json", by_alias=True)


# =============================================================================
# REFERENCE ENTITIES
# =============================================================================

class ReferenceEntity(_CamelModel):
    """
    Base for lookup entities.

    Inactive entities are never purged: old transactions still display
    them, they are only hidden from pickers for new entries.
    """
    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=200)
    is_active: bool = True


class Category(ReferenceEntity):
    type: TransactionType


class ProjectDept(ReferenceEntity):
    pass


class PaymentMethod(ReferenceEntity):
    pass


class User(_CamelModel):
    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    role: Role = Role.EMPLOYEE
    avatar: str = ""
    password: Optional[str] = None

    @property
    def is_manager(self) -> bool:
        return self.role == Role.MANAGER


# =============================================================================
# TRANSACTION
# =============================================================================

class Transaction(_CamelModel):
    """
    A single income/expense record.

    The *_id foreign keys are authoritative whenever they resolve against
    the current reference lists. The *_name fields are display caches used
    only when they do not (e.g. rows pulled from a names-only remote sheet).
    """

    id: str = Field(default_factory=new_transaction_id, min_length=1)
    date: dt.date
    type: TransactionType = TransactionType.EXPENSE
    amount: Decimal = Field(default=Decimal("0"), ge=0)
    summary: str = ""
    attachment_url: Optional[str] = None
    has_tax_id: bool = False
    status: TransactionStatus = TransactionStatus.PENDING
    created_at: int = Field(default_factory=now_millis)

    category_id: str = UNRESOLVED_ID
    project_dept_id: str = UNRESOLVED_ID
    payment_method_id: str = UNRESOLVED_ID
    recorded_by_id: str = UNKNOWN_USER_ID

    category_name: Optional[str] = None
    project_name: Optional[str] = None
    method_name: Optional[str] = None
    recorded_by_name: Optional[str] = None

    @field_validator("amount", mode="before")
    @classmethod
    def coerce_amount(cls, v):
        # Spreadsheet cells come back as floats or strings
        if isinstance(v, float):
            return Decimal(str(v))
        return v


# =============================================================================
# CONFIG + AI EXTRACTION
# =============================================================================

class SyncConfig(_CamelModel):
    """Remote endpoint configuration. No URL means purely local operation."""
    endpoint_url: Optional[str] = None

    @property
    def is_configured(self) -> bool:
        return bool(self.endpoint_url and self.endpoint_url.strip())


class ReceiptExtraction(_CamelModel):
    """
    Best-effort guess returned by the receipt reader.

    Every field may be missing. This is PROPOSED data only: it fills in a
    draft the user still reviews before submitting.
    """
    amount: Optional[Decimal] = Field(default=None, ge=0)
    date: Optional[dt.date] = None
    summary: Optional[str] = None
    has_tax_id: Optional[bool] = None
