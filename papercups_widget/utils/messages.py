"""Small helpers shared by the sync services."""

import re
from datetime import datetime
from typing import Iterable, Optional, Union

from pydantic import TypeAdapter, ValidationError

from papercups_widget.models.message import Message, MessageType, ensure_utc

_UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)

_datetime_adapter = TypeAdapter(datetime)

Timestamp = Union[datetime, str, None]


def is_valid_uuid(value: Optional[str]) -> bool:
    return bool(value) and bool(_UUID_PATTERN.match(value))


def parse_timestamp(value: Timestamp) -> Optional[datetime]:
    """Parse an ISO-8601 string (or pass through a datetime) as aware UTC."""
    if value is None or value == "":
        return None
    try:
        return ensure_utc(_datetime_adapter.validate_python(value))
    except ValidationError:
        return None


def are_dates_equal(a: Timestamp, b: Timestamp) -> bool:
    """Compare two timestamps as instants rather than as strings.

    "2020-01-01T00:00:00Z" and "2020-01-01T00:00:00.000000+00:00" are equal.
    Unparseable or missing values never match.
    """
    left = parse_timestamp(a)
    right = parse_timestamp(b)
    if left is None or right is None:
        return False
    return left == right


def bodies_match(a: Optional[str], b: Optional[str]) -> bool:
    """Message bodies match when equal, treating empty and missing as the same."""
    return (a or "") == (b or "")


def should_activate_game_mode(body: Optional[str], triggers: Iterable[str]) -> bool:
    if not body:
        return False
    return body.strip().lower() in set(triggers)


def is_customer_message(message: Message, customer_id: Optional[str]) -> bool:
    """True for entries written by the local visitor.

    The local type tag marks optimistic entries; confirmed entries are matched
    on customer_id.
    """
    if message.type == MessageType.CUSTOMER:
        return True
    return bool(customer_id) and message.customer_id == customer_id


def shorten(text: Optional[str], max_chars: int) -> str:
    text = text or ""
    if len(text) <= max_chars:
        return text
    return text[: max(max_chars - 3, 0)].rstrip() + "..."
