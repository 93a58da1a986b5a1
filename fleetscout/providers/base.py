"""Abstract base class for ticketing clients."""

from abc import ABC, abstractmethod

from fleetscout.models import FreeScoutOptions


class TicketClient(ABC):
    @abstractmethod
    def create_conversation(self, subject: str, body: str) -> int: ...

    @abstractmethod
    def config_matches(self, options: FreeScoutOptions) -> bool: ...
