"""Error taxonomy for the collection pipeline.

Every error carries a dotted ``kind`` so run summaries and log lines can say
which stage failed without matching on class names.
"""

from __future__ import annotations

from typing import Optional


class CouplingMonitorError(Exception):
    kind = "error"


class ConfigError(CouplingMonitorError):
    """Missing or invalid settings; aborts startup."""

    kind = "config"


class FetchError(CouplingMonitorError):
    kind = "fetch"


class TransportFetchError(FetchError):
    """Network failure or timeout talking to the graph API."""

    kind = "fetch.transport"


class BadStatusError(FetchError):
    kind = "fetch.bad_status"

    def __init__(self, status_code: int, body: str) -> None:
        super().__init__(f"Graph API returned HTTP {status_code}: {body}")
        self.status_code = status_code
        self.body = body


class DecodeError(FetchError):
    """Response body is not JSON or does not match the graph envelope."""

    kind = "fetch.decode"


class StoreError(CouplingMonitorError):
    kind = "store"


class StoreConnectionError(StoreError):
    kind = "store.connection"


class StoreQueryError(StoreError):
    kind = "store.query"


class PersistError(CouplingMonitorError):
    kind = "persist"


class RecordWriteFailed(PersistError):
    """The snapshot record was not written; the watermark was not touched."""

    kind = "persist.record_write"


class WatermarkWriteFailed(PersistError):
    """The snapshot is durable but the watermark still holds the older value.

    The next run plans from that older watermark and fetches the same window
    again, so the window is stored twice rather than lost.
    """

    kind = "persist.watermark_write"

    def __init__(self, message: str, end_time: Optional[int] = None) -> None:
        super().__init__(message)
        self.end_time = end_time
