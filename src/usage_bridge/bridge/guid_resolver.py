"""Resolution of tracked service labels to Cloud Controller GUIDs."""

import logging
from collections.abc import MutableMapping

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_never,
    wait_fixed,
)

from usage_bridge.bridge.errors import GuidResolutionError
from usage_bridge.bridge.paging import PagingClient
from usage_bridge.bridge.tokens import TokenSource
from usage_bridge.config import TrackedResource

logger = logging.getLogger(__name__)


class ServiceGuidResolver:
    """Fills in the GUID of every tracked service that lacks one."""

    def __init__(self, paging: PagingClient, token_source: TokenSource) -> None:
        self._paging = paging
        self._token_source = token_source

    async def resolve_guids(self, resources: MutableMapping[str, TrackedResource]) -> None:
        """Look up missing service GUIDs and store them on the resources.

        Args:
            resources: Tracked services by label, updated in place.

        Raises:
            GuidResolutionError: If the services cannot be read.
        """
        labels = [label for label, resource in resources.items() if not resource.guid]
        if not labels:
            return

        path = f"/v2/services?q=label IN {','.join(labels)}"
        try:
            async for service in self._paging.iter_resources(path, self._token_source):
                label = service["entity"]["label"]
                if label in resources:
                    resources[label].guid = service["metadata"]["guid"]
                    logger.debug("Service %s has GUID %s", label, resources[label].guid)
        except Exception as e:
            raise GuidResolutionError(f"Could not read GUIDs of services {labels}", e) from e

        missing = [label for label in labels if not resources[label].guid]
        if missing:
            logger.warning("No GUID found for services %s", missing)

    async def resolve_guids_forever(
        self,
        resources: MutableMapping[str, TrackedResource],
        retry_interval_seconds: float,
    ) -> None:
        """Resolve the GUIDs, retrying until the Cloud Controller answers."""
        retryer = AsyncRetrying(
            stop=stop_never,
            wait=wait_fixed(retry_interval_seconds),
            retry=retry_if_exception_type(GuidResolutionError),
            reraise=True,
            before_sleep=lambda rs: logger.warning(
                "Resolving service GUIDs failed (attempt %d): %s",
                rs.attempt_number,
                rs.outcome.exception() if rs.outcome else "unknown error",
            ),
        )
        async for attempt in retryer:
            with attempt:
                await self.resolve_guids(resources)
