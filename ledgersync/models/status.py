"""
Status Normalizer

Remote rows carry status as enum tokens in any case ("approved",
"BOOKED") or as the localized labels the sheet shows to people. Every
value crossing into the local model goes through normalize_status().

Anything unrecognized becomes PENDING: an unknown value is always read
as the least-advanced state, never as further along.
"""

from typing import Any

from ledgersync.models.transaction import TransactionStatus


STATUS_LABELS = {
    TransactionStatus.PENDING: "待審核",
    TransactionStatus.APPROVED: "已審核",
    TransactionStatus.BOOKED: "已入帳",
}

_LOOKUP = {
    **{status.value: status for status in TransactionStatus},
    **{label: status for status, label in STATUS_LABELS.items()},
}


def normalize_status(raw: Any) -> TransactionStatus:
    if isinstance(raw, TransactionStatus):
        return raw
    if raw is None:
        return TransactionStatus.PENDING
    token = str(raw).strip().upper()
    return _LOOKUP.get(token, TransactionStatus.PENDING)


def status_label(status: TransactionStatus) -> str:
    """Localized label, as written to the sheet's status column."""
    return STATUS_LABELS[status]
