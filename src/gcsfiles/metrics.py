"""Prometheus metrics definitions for gcsfiles.

All metrics use the ``gcsfiles_`` prefix and live in the global
``prometheus_client`` registry.  They are created by :func:`init_metrics`;
until then the module-level references stay ``None`` and the ``record_*``
helpers do nothing, so the library never registers collectors in an
application that did not ask for them.
"""

from __future__ import annotations

from prometheus_client import Counter

_initialized: bool = False

# ---------------------------------------------------------------------------
# Transport operation counter  (labels: operation, status)
# ---------------------------------------------------------------------------
operations_total: Counter | None = None

# ---------------------------------------------------------------------------
# Signing and upload counters
# ---------------------------------------------------------------------------
signed_urls_total: Counter | None = None
upload_attempts_total: Counter | None = None

# ---------------------------------------------------------------------------
# Byte counter
# ---------------------------------------------------------------------------
bytes_read_total: Counter | None = None


def init_metrics() -> None:
    """Create and register all Prometheus metrics.

    Safe to call more than once; collectors are registered only on the
    first call.
    """
    global _initialized
    global operations_total, signed_urls_total, upload_attempts_total
    global bytes_read_total

    if _initialized:
        return

    operations_total = Counter(
        "gcsfiles_operations_total",
        "Total transport operations by type and outcome",
        ["operation", "status"],
    )

    signed_urls_total = Counter(
        "gcsfiles_signed_urls_total",
        "Total signed URLs issued by action",
        ["action"],
    )

    upload_attempts_total = Counter(
        "gcsfiles_upload_attempts_total",
        "Resumable upload initiation attempts by outcome",
        ["outcome"],
    )

    bytes_read_total = Counter(
        "gcsfiles_bytes_read_total",
        "Total bytes forwarded by read_file",
    )

    _initialized = True


def record_operation(operation: str, status: str) -> None:
    if operations_total is not None:
        operations_total.labels(operation=operation, status=status).inc()


def record_signed_url(action: str) -> None:
    if signed_urls_total is not None:
        signed_urls_total.labels(action=action).inc()


def record_upload_attempt(outcome: str) -> None:
    if upload_attempts_total is not None:
        upload_attempts_total.labels(outcome=outcome).inc()


def record_bytes_read(count: int) -> None:
    if bytes_read_total is not None:
        bytes_read_total.inc(count)
