"""Customer identity resolution across page loads."""

import logging
from typing import Optional

from pydantic import ValidationError

from papercups_widget.bridge.host import HostBridge, HostEvent
from papercups_widget.core.exceptions import BackendRequestError
from papercups_widget.integrations.papercups_api import PapercupsAPI
from papercups_widget.models.customer import CustomerMetadata
from papercups_widget.utils.messages import is_valid_uuid

logger = logging.getLogger(__name__)


class IdentityResolver:
    """Decide which customer id the widget should act as.

    The cached id from the host page is trusted unless the host also passes
    an external_id, in which case the backend's match for that external id
    wins. When the match differs from the cached id the host is told via
    customer:updated so it can fix its cache.
    """

    def __init__(self, api: PapercupsAPI, bridge: HostBridge, account_id: str):
        self.api = api
        self.bridge = bridge
        self.account_id = account_id

    async def is_valid_customer(self, customer_id: Optional[str]) -> bool:
        """Check that a cached customer id is well-formed and known to the backend.

        Older backends have no exists endpoint, so a failed check counts as
        valid.
        """
        if not customer_id or not is_valid_uuid(customer_id):
            return False

        try:
            return await self.api.is_valid_customer(customer_id, self.account_id)
        except BackendRequestError:
            # TODO: distinguish a missing endpoint (older backend) from a
            # transient network error instead of accepting both
            logger.warning("Failed to validate customer ID.")
            logger.warning("You might be on an older version of Papercups.")
            return True

    async def check_for_existing_customer(
        self,
        metadata: Optional[CustomerMetadata],
        default_customer_id: Optional[str],
    ) -> Optional[str]:
        """Resolve the active customer id from external identity metadata.

        Args:
            metadata: Host-provided customer metadata (may carry external_id).
            default_customer_id: The cached id to fall back to.

        Returns:
            The customer id to use, or None for an unseen visitor.
        """
        if metadata is None or not metadata.external_id:
            return default_customer_id

        try:
            matching_customer_id = await self.api.find_customer_by_external_id(
                metadata.external_id,
                self.account_id,
                email=metadata.email,
                host=metadata.host,
            )
        except (BackendRequestError, ValidationError) as e:
            logger.debug("Error looking up customer by external id: %s", e)
            return None

        if not matching_customer_id:
            return None

        if matching_customer_id == default_customer_id:
            return default_customer_id

        # Let the host page cache the corrected id
        self.bridge.emit(
            HostEvent.CUSTOMER_UPDATED, {"customerId": matching_customer_id}
        )
        return matching_customer_id

    async def resolve(
        self,
        cached_customer_id: Optional[str],
        metadata: Optional[CustomerMetadata],
    ) -> Optional[str]:
        """Validate the cached id, then apply external identity resolution."""
        is_valid = await self.is_valid_customer(cached_customer_id)
        customer_id = cached_customer_id if is_valid else None
        return await self.check_for_existing_customer(metadata, customer_id)
