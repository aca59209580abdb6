import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import aiohttp

from papercups_widget.core.config import Settings
from papercups_widget.core.exceptions import BackendRequestError
from papercups_widget.metrics.widget_metrics import (
    backend_request_duration_seconds,
    backend_requests_total,
)
from papercups_widget.models.customer import CustomerMetadata
from papercups_widget.models.message import Conversation

logger = logging.getLogger(__name__)


class PapercupsAPI:
    """HTTP client for the Papercups customer and conversation endpoints.

    Every response body wraps its payload in {"data": ...}; the helpers
    below unwrap it. Network failures, timeouts and non-2xx statuses all
    surface as BackendRequestError so callers can apply one policy.
    """

    def __init__(self, settings: Settings, base_url: Optional[str] = None):
        self.settings = settings
        self.base_url = (base_url or settings.BASE_URL).rstrip("/")
        self._session: Optional[aiohttp.ClientSession] = None

    async def setup(self):
        """Initialize the API client with timeouts."""
        if not self._session:
            timeout = aiohttp.ClientTimeout(total=self.settings.REQUEST_TIMEOUT_SECONDS)
            self._session = aiohttp.ClientSession(timeout=timeout)

    async def cleanup(self):
        """Clean up resources."""
        if self._session:
            await self._session.close()
            self._session = None

    async def _make_request(
        self, operation: str, method: str, endpoint: str, **kwargs: Any
    ) -> Any:
        """Make an HTTP request and return the unwrapped "data" field."""
        if not self._session:
            await self.setup()

        if "params" in kwargs:
            kwargs["params"] = {
                k: v for k, v in kwargs["params"].items() if v is not None
            }

        url = f"{self.base_url}/{endpoint.lstrip('/')}"
        started = time.monotonic()
        try:
            async with self._session.request(method, url, **kwargs) as response:
                response.raise_for_status()
                body = await response.json()
        except aiohttp.ClientResponseError as e:
            backend_requests_total.labels(operation=operation, result="error").inc()
            logger.error(f"Papercups API {operation} returned HTTP {e.status}")
            raise BackendRequestError(operation, e.message, status=e.status) from e
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            backend_requests_total.labels(operation=operation, result="error").inc()
            logger.error(f"Error making {operation} request to Papercups API: {e!r}")
            raise BackendRequestError(operation, repr(e)) from e
        finally:
            backend_request_duration_seconds.labels(operation=operation).observe(
                time.monotonic() - started
            )

        backend_requests_total.labels(operation=operation, result="ok").inc()
        if not isinstance(body, dict):
            raise BackendRequestError(operation, "response body is not an object")
        return body.get("data")

    async def is_valid_customer(self, customer_id: str, account_id: str) -> bool:
        """Ask the backend whether a cached customer id still exists."""
        data = await self._make_request(
            "customer_exists",
            "GET",
            f"/api/customers/{customer_id}/exists",
            params={"account_id": account_id},
        )
        return bool(data)

    async def find_customer_by_external_id(
        self,
        external_id: str,
        account_id: str,
        email: Optional[str] = None,
        host: Optional[str] = None,
    ) -> Optional[str]:
        """Look up a customer by the host application's own user id.

        The email and host filters keep ids from colliding across the
        different sites of one account.
        """
        data = await self._make_request(
            "identify_customer",
            "GET",
            "/api/customers/identify",
            params={
                "external_id": external_id,
                "account_id": account_id,
                "email": email,
                "host": host,
            },
        )
        if not data:
            return None
        customer_id = data.get("customer_id")
        return str(customer_id) if customer_id else None

    async def fetch_customer_conversations(
        self, customer_id: str, account_id: str
    ) -> List[Conversation]:
        """Fetch a customer's conversations, most recent first, with messages."""
        data = await self._make_request(
            "fetch_conversations",
            "GET",
            "/api/conversations/customer",
            params={"customer_id": customer_id, "account_id": account_id},
        )
        return [Conversation.model_validate(item) for item in data or []]

    async def create_customer(
        self, account_id: str, metadata: Optional[CustomerMetadata] = None
    ) -> str:
        now = datetime.now(timezone.utc).isoformat()
        customer: Dict[str, Any] = dict(metadata.to_payload() if metadata else {})
        customer.update({"account_id": account_id, "first_seen": now, "last_seen": now})
        data = await self._make_request(
            "create_customer", "POST", "/api/customers", json={"customer": customer}
        )
        return self._require_id("create_customer", data)

    async def update_customer_metadata(
        self, customer_id: str, metadata: Optional[CustomerMetadata] = None
    ) -> str:
        data = await self._make_request(
            "update_customer",
            "PUT",
            f"/api/customers/{customer_id}/metadata",
            json={"metadata": metadata.to_payload() if metadata else {}},
        )
        return self._require_id("update_customer", data)

    async def create_conversation(self, account_id: str, customer_id: str) -> str:
        data = await self._make_request(
            "create_conversation",
            "POST",
            "/api/conversations",
            json={
                "conversation": {"account_id": account_id, "customer_id": customer_id}
            },
        )
        return self._require_id("create_conversation", data)

    @staticmethod
    def _require_id(operation: str, data: Any) -> str:
        if not isinstance(data, dict) or not data.get("id"):
            raise BackendRequestError(operation, "response is missing an id")
        return str(data["id"])
