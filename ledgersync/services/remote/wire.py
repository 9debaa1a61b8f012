"""
Remote Wire Contract (version 1)

The remote side is a spreadsheet script exposing one URL:
- POST a JSON body discriminated by "dataType" (and "action" for
  reference data). Reply: {"result": "success" | "error" | ..., ...}.
- GET with ?action=<read op>[&userId=...]. Reply: either a JSON array of
  entity objects, or a tabular {"headers": [...], "data": [[...], ...]}
  payload whose columns follow the fixed orders below.

DESIGN DECISION: This module is the only place that knows the remote
vocabulary. Earlier clients spoke several incompatible dialects; the read
side still accepts both reply shapes, but everything we send uses this one
versioned contract. Upserts and deletes are keyed by id so replays are
idempotent on the remote side.
"""

from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Generic, Optional, TypeVar

from pydantic import BaseModel, Field, ValidationError

from ledgersync.models.transaction import (
    UNKNOWN_USER_ID,
    UNRESOLVED_ID,
    Category,
    ProjectDept,
    Role,
    Transaction,
    TransactionType,
    User,
)
from ledgersync.models.status import normalize_status


WIRE_VERSION = 1

SUCCESS = "success"
NOT_FOUND = "not_found"


class DataType(str, Enum):
    TRANSACTION = "TRANSACTION"
    DELETE_TRANSACTION = "DELETE_TRANSACTION"
    CATEGORY = "CATEGORY"
    PROJECT = "PROJECT"


class ReferenceAction(str, Enum):
    ADD = "add"
    UPDATE = "update"
    DELETE = "delete"


class ReadAction(str, Enum):
    USERS = "getUsers"
    CATEGORIES = "getCategories"
    PROJECTS = "getProjects"
    TRANSACTIONS = "getTransactions"


# =============================================================================
# COLUMN MAPPING (tabular replies)
# =============================================================================

# Order of the Transactions sheet. The remote keeps display names only,
# no foreign-key ids.
TRANSACTION_COLUMNS = [
    "id",
    "date",
    "type",
    "amount",
    "summary",
    "categoryName",
    "projectName",
    "methodName",
    "hasTaxId",
    "recordedByName",
    "status",
    "createdAt",
    "attachmentUrl",
]
# attachmentUrl is absent on older sheets
TRANSACTION_REQUIRED_COLUMNS = 12

USER_COLUMNS = ["id", "name", "role", "avatar", "password"]
CATEGORY_COLUMNS = ["id", "name", "type", "isActive"]
PROJECT_COLUMNS = ["id", "name", "isActive"]

TAX_ID_YES = "是"
TAX_ID_NO = "否"

_TRUE_TOKENS = {"TRUE", "1", "YES", "Y", TAX_ID_YES}


class RowSchemaError(ValueError):
    """A single remote row could not be mapped to an entity."""
    pass


T = TypeVar("T")


class SkippedRow(BaseModel):
    index: int
    reason: str


class ParsedBatch(BaseModel, Generic[T]):
    """Entities mapped from one remote reply, plus the rows that were dropped."""

    items: list[T] = Field(default_factory=list)
    skipped: list[SkippedRow] = Field(default_factory=list)


# =============================================================================
# OUTGOING PAYLOADS
# =============================================================================

def transaction_upsert_payload(
    tx: Transaction,
    category_name: str,
    project_name: str,
    method_name: str,
    recorded_by_name: str,
) -> dict:
    """
    Create-or-update request for one transaction.

    Names are passed in by the caller, resolved from the reference lists
    at replay time.
    """
    return {
        "dataType": DataType.TRANSACTION.value,
        "version": WIRE_VERSION,
        "id": tx.id,
        "date": tx.date.isoformat(),
        "type": tx.type.value,
        "amount": float(tx.amount),
        "summary": tx.summary,
        "categoryId": tx.category_id,
        "categoryName": category_name,
        "projectDeptId": tx.project_dept_id,
        "projectName": project_name,
        "paymentMethodId": tx.payment_method_id,
        "methodName": method_name,
        "hasTaxId": TAX_ID_YES if tx.has_tax_id else TAX_ID_NO,
        "recordedById": tx.recorded_by_id,
        "recordedByName": recorded_by_name,
        "status": tx.status.value,
        "createdAt": tx.created_at,
        "attachmentUrl": tx.attachment_url or "",
    }


def transaction_delete_payload(transaction_id: str) -> dict:
    return {
        "dataType": DataType.DELETE_TRANSACTION.value,
        "version": WIRE_VERSION,
        "id": transaction_id,
    }


def category_payload(category: Category, action: ReferenceAction) -> dict:
    return {
        "dataType": DataType.CATEGORY.value,
        "version": WIRE_VERSION,
        "action": action.value,
        **category.to_wire(),
    }


def project_payload(project: ProjectDept, action: ReferenceAction) -> dict:
    return {
        "dataType": DataType.PROJECT.value,
        "version": WIRE_VERSION,
        "action": action.value,
        **project.to_wire(),
    }


def is_acknowledged(body: dict, tolerate_not_found: bool = False) -> bool:
    result = body.get("result")
    if result == SUCCESS:
        return True
    return tolerate_not_found and result == NOT_FOUND


# =============================================================================
# INCOMING VALUES
# =============================================================================

def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _text(value: Any) -> Optional[str]:
    return None if _blank(value) else str(value).strip()


def parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if _blank(value):
        return False
    return str(value).strip().upper() in _TRUE_TOKENS


def parse_date(value: Any) -> date:
    """
    Parse a sheet date cell.

    Cells arrive as "YYYY-MM-DD", full ISO timestamps, or slash dates.
    The calendar date written by the user is the leading part, so it is
    taken as-is rather than shifted through a timezone.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = _text(value)
    if text is None:
        raise RowSchemaError("missing date")
    head = text[:10]
    for fmt in ("%Y-%m-%d", "%Y/%m/%d"):
        try:
            return datetime.strptime(head, fmt).date()
        except ValueError:
            continue
    for fmt in ("%d-%m-%Y", "%d/%m/%Y"):
        try:
            return datetime.strptime(text.split(" ")[0], fmt).date()
        except ValueError:
            continue
    raise RowSchemaError(f"unparseable date {value!r}")


def parse_amount(value: Any) -> Decimal:
    if _blank(value):
        return Decimal("0")
    try:
        amount = Decimal(str(value).replace(",", "").strip())
    except InvalidOperation as e:
        raise RowSchemaError(f"unparseable amount {value!r}") from e
    if not amount.is_finite():
        raise RowSchemaError(f"non-finite amount {value!r}")
    return amount


def parse_created_at(value: Any) -> Optional[int]:
    if _blank(value):
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError, OverflowError):
        # inf, nan and out-of-range cells carry no usable time
        return None


def parse_role(value: Any) -> Role:
    # Unknown roles get the least privilege
    if isinstance(value, Role):
        return value
    return Role.MANAGER if str(value or "").strip().upper() == Role.MANAGER.value else Role.EMPLOYEE


def parse_type(value: Any) -> TransactionType:
    if str(value or "").strip().upper() == TransactionType.INCOME.value:
        return TransactionType.INCOME
    return TransactionType.EXPENSE


# =============================================================================
# ROW / RECORD MAPPING
# =============================================================================

def _row_to_record(row: list, columns: list[str]) -> dict:
    return {name: row[idx] for idx, name in enumerate(columns) if idx < len(row)}


def record_to_transaction(record: dict) -> Transaction:
    """
    Map one remote transaction (object form, camelCase keys) to the model.

    Foreign keys missing from the record become the unresolved sentinel;
    display names are kept as shadow fields.
    """
    tx_id = _text(record.get("id"))
    if tx_id is None:
        raise RowSchemaError("missing id")

    data = {
        "id": tx_id,
        "date": parse_date(record.get("date")),
        "type": parse_type(record.get("type")),
        "amount": parse_amount(record.get("amount")),
        "summary": _text(record.get("summary")) or "",
        "has_tax_id": parse_bool(record.get("hasTaxId")),
        "status": normalize_status(record.get("status")),
        "attachment_url": _text(record.get("attachmentUrl")),
        "category_id": _text(record.get("categoryId")) or UNRESOLVED_ID,
        "project_dept_id": _text(record.get("projectDeptId")) or UNRESOLVED_ID,
        "payment_method_id": _text(record.get("paymentMethodId")) or UNRESOLVED_ID,
        "recorded_by_id": _text(record.get("recordedById")) or UNKNOWN_USER_ID,
        "category_name": _text(record.get("categoryName")),
        "project_name": _text(record.get("projectName")),
        "method_name": _text(record.get("methodName")),
        "recorded_by_name": _text(record.get("recordedByName")),
    }
    created_at = parse_created_at(record.get("createdAt"))
    if created_at is not None:
        data["created_at"] = created_at

    try:
        return Transaction(**data)
    except ValidationError as e:
        raise RowSchemaError(str(e)) from e


def row_to_transaction(row: list) -> Transaction:
    """Map one tabular row (TRANSACTION_COLUMNS order)."""
    if len(row) < TRANSACTION_REQUIRED_COLUMNS:
        raise RowSchemaError(
            f"expected at least {TRANSACTION_REQUIRED_COLUMNS} columns, got {len(row)}"
        )
    return record_to_transaction(_row_to_record(row, TRANSACTION_COLUMNS))


def record_to_user(record: dict) -> User:
    if _text(record.get("id")) is None or _text(record.get("name")) is None:
        raise RowSchemaError("user needs id and name")
    try:
        return User(
            id=_text(record["id"]),
            name=_text(record["name"]),
            role=parse_role(record.get("role")),
            avatar=_text(record.get("avatar")) or "",
            password=None if _blank(record.get("password")) else str(record["password"]),
        )
    except ValidationError as e:
        raise RowSchemaError(str(e)) from e


def record_to_category(record: dict) -> Category:
    if _text(record.get("id")) is None or _text(record.get("name")) is None:
        raise RowSchemaError("category needs id and name")
    return Category(
        id=_text(record["id"]),
        name=_text(record["name"]),
        type=parse_type(record.get("type")),
        is_active=True if "isActive" not in record else parse_bool(record["isActive"]),
    )


def record_to_project(record: dict) -> ProjectDept:
    if _text(record.get("id")) is None or _text(record.get("name")) is None:
        raise RowSchemaError("project needs id and name")
    return ProjectDept(
        id=_text(record["id"]),
        name=_text(record["name"]),
        is_active=True if "isActive" not in record else parse_bool(record["isActive"]),
    )


# read action -> (column order for tabular replies, record mapper)
COLUMN_MAP = {
    ReadAction.TRANSACTIONS: (TRANSACTION_COLUMNS, record_to_transaction),
    ReadAction.USERS: (USER_COLUMNS, record_to_user),
    ReadAction.CATEGORIES: (CATEGORY_COLUMNS, record_to_category),
    ReadAction.PROJECTS: (PROJECT_COLUMNS, record_to_project),
}


class MalformedPayload(ValueError):
    """The reply as a whole has neither accepted shape."""
    pass


def parse_read_reply(action: ReadAction, body: Any) -> ParsedBatch:
    """
    Map a GET reply of either shape to entities.

    Bad rows are collected in `skipped` instead of failing the batch.
    """
    columns, mapper = COLUMN_MAP[action]

    if isinstance(body, dict) and isinstance(body.get("data"), list):
        if "headers" in body:
            rows = body["data"]
            tabular = True
        else:
            rows = body["data"]
            tabular = False
    elif isinstance(body, list):
        rows = body
        tabular = False
    else:
        raise MalformedPayload(f"unexpected {action.value} reply: {type(body).__name__}")

    batch = ParsedBatch()
    for idx, row in enumerate(rows):
        try:
            if tabular or isinstance(row, list):
                if not isinstance(row, list):
                    raise RowSchemaError("expected a row array")
                if action == ReadAction.TRANSACTIONS:
                    item = row_to_transaction(row)
                else:
                    item = mapper(_row_to_record(row, columns))
            elif isinstance(row, dict):
                item = mapper(row)
            else:
                raise RowSchemaError(f"unexpected row type {type(row).__name__}")
        except (RowSchemaError, ValidationError, ArithmeticError) as e:
            batch.skipped.append(SkippedRow(index=idx, reason=str(e)))
            continue
        batch.items.append(item)
    return batch
