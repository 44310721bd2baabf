# quillhaven/core/clock.py
from collections.abc import Callable
from datetime import datetime, timezone

# Todas las fechas se guardan como UTC "naive" (DateTime(timezone=False)).
Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_aware_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def from_epoch_ms(value: int | float | None) -> datetime | None:
    """Los timestamps del proveedor de identidad vienen en milisegundos."""
    if value is None:
        return None
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc).replace(tzinfo=None)
