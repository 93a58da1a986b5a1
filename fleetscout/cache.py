"""Per-integration FreeScout client cache."""

import threading
from collections.abc import Callable

import structlog
from pydantic import BaseModel, ConfigDict

from fleetscout.models import FreeScoutOptions, IntegrationKind
from fleetscout.providers.base import TicketClient

logger = structlog.get_logger()

ClientFactory = Callable[[FreeScoutOptions], TicketClient]


class ClientCacheKey(BaseModel):
    """Integration kind plus team; team_id is None for the global config."""

    model_config = ConfigDict(frozen=True)

    kind: IntegrationKind
    team_id: int | None = None

    def __str__(self) -> str:
        return f"{self.kind.value}:{'' if self.team_id is None else self.team_id}"


class ClientCache:
    """Keeps one client per key and rebuilds it when its options change.

    The whole lookup-or-build decision runs under a single lock so concurrent
    jobs for the same key never both rebuild.
    """

    def __init__(self, factory: ClientFactory) -> None:
        self._factory = factory
        self._lock = threading.Lock()
        self._clients: dict[ClientCacheKey, TicketClient] = {}

    def resolve(self, key: ClientCacheKey, options: FreeScoutOptions | None) -> TicketClient | None:
        """Return a client for key, or None (after evicting key) when options is None."""
        with self._lock:
            if options is None:
                if self._clients.pop(key, None) is not None:
                    logger.info("freescout_client_evicted", key=str(key))
                return None

            client = self._clients.get(key)
            if client is not None and client.config_matches(options):
                return client

            client = self._factory(options)
            self._clients[key] = client
            logger.debug("freescout_client_built", key=str(key))
            return client

    def __contains__(self, key: ClientCacheKey) -> bool:
        with self._lock:
            return key in self._clients

    def __len__(self) -> int:
        with self._lock:
            return len(self._clients)
