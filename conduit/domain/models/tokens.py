"""Credential models shared by the token manager and credential stores."""

import time
from dataclasses import dataclass
from typing import Optional

# Tokens expiring within this window are treated as already expired
DEFAULT_EXPIRY_BUFFER_SECONDS = 5 * 60


@dataclass
class TokenInfo:
    """An access token cached in memory by the TokenManager."""
    access_token: str
    provider: str
    user_id: str
    refresh_token: Optional[str] = None
    expires_at: Optional[float] = None  # Unix timestamp; None means no known expiry

    def is_valid(self, now: Optional[float] = None, buffer_seconds: float = DEFAULT_EXPIRY_BUFFER_SECONDS) -> bool:
        if self.expires_at is None:
            return True
        current = time.time() if now is None else now
        return current + buffer_seconds < self.expires_at


@dataclass
class StoredCredentials:
    """Durable credential record as returned by a CredentialStore."""
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    access_token_expires_at: Optional[float] = None


@dataclass
class TokenRefreshResult:
    """Parsed response of a provider's token endpoint."""
    access_token: str
    refresh_token: Optional[str] = None
    expires_in: Optional[float] = None  # Seconds from issue time
