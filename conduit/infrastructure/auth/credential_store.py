"""Credential store implementations.

``InMemoryCredentialStore`` keeps records for the lifetime of the process
(tests, CLI). ``JsonFileCredentialStore`` persists them to a single JSON
document using ``aiofiles`` for async I/O.
"""

import asyncio
import dataclasses
import json
import logging
import os
import time
from pathlib import Path
from typing import Callable, Dict, Optional

import aiofiles

from conduit.domain.interfaces.credential_store import CredentialStore
from conduit.domain.models.tokens import StoredCredentials, TokenRefreshResult

logger = logging.getLogger(__name__)


def _record_key(user_id: str, provider: str) -> str:
    return f"{user_id}:{provider}"


def merge_refresh_result(
    existing: Optional[StoredCredentials], tokens: TokenRefreshResult, now: float
) -> StoredCredentials:
    """Applies a refresh result to a stored record.

    Providers that do not rotate refresh tokens omit them from the
    response; the previous refresh token is kept in that case.
    """
    refresh_token = tokens.refresh_token or (existing.refresh_token if existing else None)
    expires_at = now + tokens.expires_in if tokens.expires_in is not None else None
    return StoredCredentials(
        access_token=tokens.access_token,
        refresh_token=refresh_token,
        access_token_expires_at=expires_at,
    )


class InMemoryCredentialStore(CredentialStore):
    """Process-local credential store."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._records: Dict[str, StoredCredentials] = {}
        self._clock = clock

    async def get(self, user_id: str, provider: str) -> Optional[StoredCredentials]:
        record = self._records.get(_record_key(user_id, provider))
        return dataclasses.replace(record) if record else None

    async def update(self, user_id: str, provider: str, tokens: TokenRefreshResult) -> None:
        key = _record_key(user_id, provider)
        self._records[key] = merge_refresh_result(self._records.get(key), tokens, self._clock())

    async def delete(self, user_id: str, provider: str) -> None:
        self._records.pop(_record_key(user_id, provider), None)

    def put(self, user_id: str, provider: str, credentials: StoredCredentials) -> None:
        """Seeds a record directly, e.g. after an OAuth connect flow."""
        self._records[_record_key(user_id, provider)] = credentials


class JsonFileCredentialStore(CredentialStore):
    """Credential store backed by one JSON file.

    Writes go to a temporary sibling file which then replaces the target,
    so readers never observe a partially written document.
    """

    def __init__(self, path: Path, clock: Callable[[], float] = time.time):
        self.path = Path(path)
        self._clock = clock
        self._lock = asyncio.Lock()
        logger.info(f"JsonFileCredentialStore using {self.path}")

    async def _read_all(self) -> Dict[str, Dict[str, Optional[object]]]:
        if not self.path.is_file():
            return {}
        try:
            async with aiofiles.open(self.path, mode='r', encoding='utf-8') as f:
                content = await f.read()
        except PermissionError as e:
            logger.error(f"Permission denied reading credential file: {self.path}")
            raise PermissionError(f"Permission denied: {self.path}") from e
        if not content.strip():
            return {}
        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            logger.error(f"Credential file {self.path} is not valid JSON: {e}")
            raise IOError(f"Corrupt credential file {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise IOError(f"Corrupt credential file {self.path}: expected a JSON object")
        return data

    async def _write_all(self, data: Dict[str, Dict[str, Optional[object]]]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        async with aiofiles.open(tmp_path, mode='w', encoding='utf-8') as f:
            await f.write(json.dumps(data, indent=2, sort_keys=True))
        os.replace(tmp_path, self.path)
        logger.debug(f"Wrote {len(data)} credential records to {self.path}")

    async def get(self, user_id: str, provider: str) -> Optional[StoredCredentials]:
        data = await self._read_all()
        record = data.get(_record_key(user_id, provider))
        if record is None:
            return None
        return StoredCredentials(
            access_token=record.get("access_token"),
            refresh_token=record.get("refresh_token"),
            access_token_expires_at=record.get("access_token_expires_at"),
        )

    async def update(self, user_id: str, provider: str, tokens: TokenRefreshResult) -> None:
        async with self._lock:
            data = await self._read_all()
            key = _record_key(user_id, provider)
            existing = data.get(key)
            previous = StoredCredentials(**existing) if existing else None
            merged = merge_refresh_result(previous, tokens, self._clock())
            data[key] = dataclasses.asdict(merged)
            await self._write_all(data)

    async def delete(self, user_id: str, provider: str) -> None:
        async with self._lock:
            data = await self._read_all()
            if data.pop(_record_key(user_id, provider), None) is not None:
                await self._write_all(data)

    async def put(self, user_id: str, provider: str, credentials: StoredCredentials) -> None:
        """Seeds a record directly, e.g. after an OAuth connect flow."""
        async with self._lock:
            data = await self._read_all()
            data[_record_key(user_id, provider)] = dataclasses.asdict(credentials)
            await self._write_all(data)
