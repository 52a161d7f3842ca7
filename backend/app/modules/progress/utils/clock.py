from datetime import datetime, timezone


def UtcNow() -> datetime:
    return datetime.now(tz=timezone.utc).replace(tzinfo=None)


def ToNaiveUtc(value: datetime | None) -> datetime | None:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def AsUtc(value: datetime | None) -> datetime | None:
    """Attach the UTC offset to a stored naive timestamp before it leaves the API."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
