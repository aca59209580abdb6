"""Customer identity models."""

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class CustomerMetadata(BaseModel):
    """Identity metadata the host page knows about the visitor.

    Unknown keys are kept so hosts can attach arbitrary fields that the
    backend stores alongside the customer.
    """

    model_config = ConfigDict(extra="allow")

    email: Optional[str] = None
    host: Optional[str] = None
    external_id: Optional[str] = Field(
        default=None, description="Host application's own user id"
    )
    name: Optional[str] = None
    pathname: Optional[str] = None
    current_url: Optional[str] = None
    browser: Optional[str] = None
    os: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    def with_email(self, email: Optional[str]) -> "CustomerMetadata":
        if not email:
            return self
        return self.model_copy(update={"email": email})

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)
