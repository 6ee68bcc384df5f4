from collections import Counter
from threading import Lock
from typing import Dict, Counter as CounterType

_metrics: CounterType[str] = Counter()
_lock = Lock()


def _inc(key: str) -> None:
    with _lock:
        _metrics[key] += 1


def record_redemption() -> None:
    _inc("coupon_redemptions")


def record_rejection(reason: str) -> None:
    _inc(f"coupon_rejections.{reason}")


def record_release() -> None:
    _inc("coupon_releases")


def record_reservation_conflict() -> None:
    _inc("coupon_reservation_conflicts")


def snapshot() -> Dict[str, int]:
    with _lock:
        return dict(_metrics)


def reset() -> None:
    with _lock:
        _metrics.clear()
