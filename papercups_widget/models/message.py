"""Timeline message and conversation models.

Field names follow the backend's snake_case wire format so payloads can be
validated and dumped without aliasing.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class MessageType(str, Enum):
    """Local sender tag; the server does not always populate it."""

    CUSTOMER = "customer"
    AGENT = "agent"
    BOT = "bot"


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive timestamps (the backend emits NaiveDateTime) as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Message(BaseModel):
    """A single timeline entry.

    An entry without created_at is optimistic: it was inserted locally and
    has not been echoed back by the server yet.
    """

    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    body: Optional[str] = None
    file_ids: List[str] = Field(default_factory=list)
    customer_id: Optional[str] = None
    user_id: Optional[Union[int, str]] = None
    conversation_id: Optional[str] = None
    account_id: Optional[str] = None
    type: Optional[MessageType] = None
    sent_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    seen_at: Optional[datetime] = None

    @field_validator("file_ids", mode="before")
    @classmethod
    def coerce_file_ids(cls, v: Any) -> List[str]:
        if v is None:
            return []
        return [str(file_id) for file_id in v]

    @field_validator("id", "customer_id", "conversation_id", "account_id", mode="before")
    @classmethod
    def coerce_identifier(cls, v: Any) -> Optional[str]:
        return None if v is None else str(v)

    @field_validator("sent_at", "created_at", "seen_at")
    @classmethod
    def normalize_timestamp(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v)

    @property
    def is_confirmed(self) -> bool:
        return self.created_at is not None

    @property
    def is_from_agent(self) -> bool:
        return bool(self.user_id)

    @property
    def is_seen(self) -> bool:
        return self.seen_at is not None

    def to_payload(self) -> Dict[str, Any]:
        """Wire representation used for channel pushes and host events."""
        return self.model_dump(mode="json", exclude_none=True)


class Conversation(BaseModel):
    """A conversation as returned by the customer conversations endpoint."""

    model_config = ConfigDict(extra="allow")

    id: str
    customer_id: Optional[str] = None
    messages: List[Message] = Field(default_factory=list)

    @field_validator("id", "customer_id", mode="before")
    @classmethod
    def coerce_identifier(cls, v: Any) -> Optional[str]:
        return None if v is None else str(v)

    @field_validator("messages", mode="before")
    @classmethod
    def coerce_messages(cls, v: Any) -> List[Any]:
        return v or []

    def sorted_messages(self) -> List[Message]:
        """Messages ordered by created_at, oldest first."""
        epoch = datetime.min.replace(tzinfo=timezone.utc)
        return sorted(self.messages, key=lambda m: m.created_at or epoch)
