from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable

from auth.models import TokenPair

LOGGER = logging.getLogger("setshop.auth")

# Matches the session cookie lifetime; older pairs can never be read again.
DEFAULT_RETENTION_SECONDS = 30 * 24 * 3600


class TokenStore(ABC):
    """Per-session token storage. A session's pair is replaced, never mutated."""

    @abstractmethod
    async def get(self, session_id: str) -> TokenPair | None:
        raise NotImplementedError

    @abstractmethod
    async def set(self, session_id: str, tokens: TokenPair) -> None:
        raise NotImplementedError

    @abstractmethod
    async def delete(self, session_id: str) -> None:
        raise NotImplementedError


class MemoryTokenStore(TokenStore):
    """Keeps pairs in process memory; expired pairs are dropped on each ``set``."""

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._tokens: dict[str, TokenPair] = {}

    async def get(self, session_id: str) -> TokenPair | None:
        return self._tokens.get(session_id)

    async def set(self, session_id: str, tokens: TokenPair) -> None:
        now = self._clock()
        self._tokens = {
            key: pair for key, pair in self._tokens.items() if pair.expires_at > now
        }
        self._tokens[session_id] = tokens

    async def delete(self, session_id: str) -> None:
        self._tokens.pop(session_id, None)


def _to_record(tokens: TokenPair) -> dict:
    return {
        "access_token": tokens.access_token,
        "refresh_token": tokens.refresh_token,
        "expires_at": tokens.expires_at,
        "scope": tokens.scope,
    }


def _from_record(record: object) -> TokenPair | None:
    if not isinstance(record, dict):
        return None
    try:
        return TokenPair(
            access_token=str(record["access_token"]),
            refresh_token=str(record.get("refresh_token") or ""),
            expires_at=float(record["expires_at"]),
            scope=str(record.get("scope") or ""),
        )
    except (KeyError, TypeError, ValueError):
        return None


class FileTokenStore(TokenStore):
    """JSON file keyed by session id, rewritten atomically on every change.

    Pairs that expired more than ``retention_seconds`` ago are dropped on write.
    """

    def __init__(
        self,
        path: str | Path = ".tokens.json",
        *,
        retention_seconds: float = DEFAULT_RETENTION_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._path = Path(path)
        self._retention_seconds = retention_seconds
        self._clock = clock
        self._lock = threading.Lock()

    async def get(self, session_id: str) -> TokenPair | None:
        with self._lock:
            record = self._load().get(session_id)
        if record is None:
            return None
        tokens = _from_record(record)
        if tokens is None:
            LOGGER.warning("Ignoring unreadable token record in %s", self._path)
        return tokens

    async def set(self, session_id: str, tokens: TokenPair) -> None:
        with self._lock:
            records = self._prune(self._load())
            records[session_id] = _to_record(tokens)
            self._save(records)

    async def delete(self, session_id: str) -> None:
        with self._lock:
            records = self._load()
            if records.pop(session_id, None) is not None:
                self._save(records)

    def _prune(self, records: dict[str, dict]) -> dict[str, dict]:
        cutoff = self._clock() - self._retention_seconds
        kept = {}
        for session_id, record in records.items():
            tokens = _from_record(record)
            if tokens is not None and tokens.expires_at >= cutoff:
                kept[session_id] = record
        return kept

    def _load(self) -> dict[str, dict]:
        if not self._path.exists():
            return {}

        records = json.loads(self._path.read_text(encoding="utf-8"))
        if not isinstance(records, dict):
            raise RuntimeError(f"Token store {self._path} must hold a JSON object.")
        return records

    def _save(self, records: dict[str, dict]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f"{self._path.name}.", dir=self._path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(records, handle, sort_keys=True)
            os.replace(tmp_name, self._path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
