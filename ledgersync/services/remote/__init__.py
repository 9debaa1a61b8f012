"""Remote spreadsheet endpoint: wire contract and HTTP client."""

from ledgersync.services.remote.client import (
    MalformedResponseError,
    RemoteRejectedError,
    RemoteSyncError,
    RemoteTransportError,
    SheetsEndpointClient,
)
from ledgersync.services.remote.wire import (
    WIRE_VERSION,
    DataType,
    ParsedBatch,
    ReadAction,
    ReferenceAction,
    RowSchemaError,
    parse_read_reply,
)

__all__ = [
    "MalformedResponseError",
    "RemoteRejectedError",
    "RemoteSyncError",
    "RemoteTransportError",
    "SheetsEndpointClient",
    "WIRE_VERSION",
    "DataType",
    "ParsedBatch",
    "ReadAction",
    "ReferenceAction",
    "RowSchemaError",
    "parse_read_reply",
]
