"""Temporal client connection management.

Services that start answer-generation runs and the worker process share a
single lazily-created client.
"""

from typing import Optional

from temporalio.client import Client as TemporalClient

from rfp_engine.core.config import settings
from rfp_engine.utils.logging import get_logger

LOGGER = get_logger(__name__)


class TemporalClientManager:
    """Lazily creates a Temporal client and keeps it around for reuse."""

    _client: Optional[TemporalClient] = None

    async def get_client(self) -> TemporalClient:
        """Get or create Temporal client instance.

        Returns:
            TemporalClient: Connected Temporal client
        """
        if self._client is None:
            target = f"{settings.temporal_host}:{settings.temporal_port}"
            LOGGER.info(f"Connecting to Temporal at {target}")
            self._client = await TemporalClient.connect(
                target,
                namespace=settings.temporal_namespace,
            )
        return self._client

    def reset(self) -> None:
        """Forget the cached client so the next call reconnects."""
        self._client = None


_temporal_manager = TemporalClientManager()


async def get_temporal_client() -> TemporalClient:
    """Get Temporal client instance.

    Returns:
        TemporalClient: Connected Temporal client
    """
    return await _temporal_manager.get_client()


def reset_temporal_client() -> None:
    """Drop the cached Temporal client."""
    _temporal_manager.reset()
