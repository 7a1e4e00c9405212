"""Authenticated identity provider boundary."""

from abc import ABC, abstractmethod
from typing import Mapping, Optional

import structlog

from ..domain.errors import UnauthenticatedError

logger = structlog.get_logger()

PARTY_HEADER = "x-party-id"


class IdentityProvider(ABC):
    """Tells the chat core who the current caller is."""

    @abstractmethod
    def get_current_party(self) -> Optional[str]:
        """Return the verified party id, or None when unauthenticated."""
        pass


class StaticIdentityProvider(IdentityProvider):
    """Always reports the same party (in-process clients and tests)."""

    def __init__(self, party: Optional[str]) -> None:
        self.party = party

    def get_current_party(self) -> Optional[str]:
        return self.party


class HeaderIdentityProvider(IdentityProvider):
    """Reads the party id an upstream auth proxy put on the request."""

    def __init__(self, headers: Mapping[str, str]) -> None:
        self.headers = headers

    def get_current_party(self) -> Optional[str]:
        party = self.headers.get(PARTY_HEADER)
        if party is None:
            return None
        party = party.strip()
        return party or None


def require_party(provider: IdentityProvider) -> str:
    """Return the current party, failing closed on any provider problem."""
    try:
        party = provider.get_current_party()
    except Exception as e:
        logger.error("identity_provider_error", error=str(e))
        raise UnauthenticatedError() from e
    if not party:
        raise UnauthenticatedError()
    return party
