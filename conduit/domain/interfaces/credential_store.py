"""Interface for durable OAuth credential storage.

The pipeline never owns credential persistence; it reads and updates
tokens through this contract.
"""

import abc
from typing import Optional

from ..models.tokens import StoredCredentials, TokenRefreshResult


class CredentialStore(abc.ABC):
    """Abstract Base Class for credential persistence."""

    @abc.abstractmethod
    async def get(self, user_id: str, provider: str) -> Optional[StoredCredentials]:
        """Loads the stored credentials for a user's provider connection.

        Returns:
            The stored record, or None if the user never connected the provider.
        """
        pass

    @abc.abstractmethod
    async def update(self, user_id: str, provider: str, tokens: TokenRefreshResult) -> None:
        """Persists freshly issued tokens.

        Args:
            user_id: Owner of the connection.
            provider: Provider the tokens belong to.
            tokens: The refresh result; ``expires_in`` is converted to an
                absolute expiry by the store.
        """
        pass

    @abc.abstractmethod
    async def delete(self, user_id: str, provider: str) -> None:
        """Removes the stored credentials (disconnect)."""
        pass
