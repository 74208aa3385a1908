"""
Canonical Row Helpers

Shared conversions used by every provider parser when building rows for
the emails / appointments tables:
- Timestamps: ISO-8601 strings, epoch seconds, epoch millis -> aware UTC
- Addresses: "Name <email@example.com>" -> "email@example.com"

Rows always carry timestamps as ISO-8601 UTC strings so they serialize
straight into Supabase upserts.
"""
from datetime import date, datetime, timezone
from typing import Any, Iterable, List, Optional, Union


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse a provider timestamp into an aware UTC datetime.

    Accepts:
        - datetime (naive values are treated as UTC)
        - ISO-8601 strings, including a trailing "Z"
        - epoch seconds (int/float)

    Returns:
        datetime in UTC, or None when value is empty

    Raises:
        ValueError: value present but not parseable
    """
    if value is None or value == "":
        return None

    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        dt = datetime.fromtimestamp(value, tz=timezone.utc)
    elif isinstance(value, str):
        dt = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    else:
        raise ValueError(f"Unsupported timestamp value: {value!r}")

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def from_epoch_millis(value: Union[str, int]) -> datetime:
    """Gmail internalDate is epoch milliseconds encoded as a string."""
    return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)


def date_to_utc(value: str) -> datetime:
    """All-day events carry a bare YYYY-MM-DD date; pin it to midnight UTC."""
    d = date.fromisoformat(value)
    return datetime(d.year, d.month, d.day, tzinfo=timezone.utc)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def extract_address(raw: Optional[str]) -> str:
    """
    Pull the bare address out of a header value.

    Examples:
        >>> extract_address('Jane Doe <jane@example.com>')
        'jane@example.com'

        >>> extract_address(' jane@example.com ')
        'jane@example.com'
    """
    if not raw:
        return ""
    raw = raw.strip()
    if "<" in raw and ">" in raw:
        return raw.split("<", 1)[1].split(">", 1)[0].strip()
    return raw


def split_address_list(raw: Optional[str]) -> List[str]:
    """Split a comma-separated To/Cc header into bare addresses."""
    if not raw:
        return []
    return [addr for addr in (extract_address(part) for part in raw.split(",")) if addr]


def addresses_from(participants: Optional[Iterable[Any]], key: str = "email") -> List[str]:
    """Collect addresses from a list of {"email": ...} participant dicts."""
    if not participants:
        return []
    result = []
    for participant in participants:
        if isinstance(participant, dict) and participant.get(key):
            result.append(participant[key])
    return result
