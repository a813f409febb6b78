"""Out-of-band delivery: operator alerts."""

from idolboard.delivery.alerts import AlertNotifier, AlertResult

__all__ = [
    "AlertNotifier",
    "AlertResult",
]
