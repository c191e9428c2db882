from collections import Counter
from threading import Lock
from typing import Dict, Counter as CounterType

_metrics: CounterType[str] = Counter()
_lock = Lock()


def _inc(key: str, amount: int = 1) -> None:
    with _lock:
        _metrics[key] += amount


def record_upload_started() -> None:
    _inc("uploads_started")


def record_upload_completed() -> None:
    _inc("uploads_completed")


def record_upload_failed() -> None:
    _inc("uploads_failed")


def record_upload_rejected() -> None:
    _inc("uploads_rejected")


def record_bulk_result(*, succeeded: int, failed: int) -> None:
    _inc("bulk_items_succeeded", succeeded)
    _inc("bulk_items_failed", failed)


def record_preview_released() -> None:
    _inc("previews_released")


def snapshot() -> Dict[str, int]:
    with _lock:
        return dict(_metrics)


def reset() -> None:
    with _lock:
        _metrics.clear()
