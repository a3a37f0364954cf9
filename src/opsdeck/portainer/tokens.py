"""Portainer bearer-token lifecycle.

Tokens come from an ordered list of sources: the durable store (read through
a short TTL cache), the token obtained by the last successful login in this
process, then the static ``PORTAINER_TOKEN``. Refresh is single-flight:
concurrent callers that saw the same stale token share one login call.
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
import os
import tempfile
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any, Protocol

from opsdeck.errors import AuthError, NoTokenAvailable

logger = logging.getLogger(__name__)

Authenticator = Callable[[], Awaitable["Token"]]


@dataclass(frozen=True, slots=True)
class Token:
    value: str
    expires_at: datetime | None = None

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or datetime.now(UTC)) >= self.expires_at

    def as_dict(self) -> dict[str, Any]:
        return {
            "token": self.value,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> Token | None:
        value = payload.get("token")
        if not isinstance(value, str) or not value.strip():
            return None
        expires_at: datetime | None = None
        raw_expiry = payload.get("expires_at")
        if isinstance(raw_expiry, str) and raw_expiry:
            try:
                expires_at = datetime.fromisoformat(raw_expiry)
            except ValueError:
                expires_at = None
        return cls(value=value.strip(), expires_at=expires_at)


def decode_jwt_expiry(token: str) -> datetime | None:
    """Return the ``exp`` claim of a JWT, or None if the token is not self-describing."""
    parts = token.split(".")
    if len(parts) != 3:
        return None
    segment = parts[1] + "=" * (-len(parts[1]) % 4)
    try:
        claims = json.loads(base64.urlsafe_b64decode(segment))
    except (ValueError, TypeError):
        return None
    exp = claims.get("exp") if isinstance(claims, dict) else None
    if not isinstance(exp, int | float):
        return None
    return datetime.fromtimestamp(exp, UTC)


def token_from_jwt(value: str, validity_hours: float = 8.0) -> Token:
    expires_at = decode_jwt_expiry(value)
    if expires_at is None:
        expires_at = datetime.now(UTC) + timedelta(hours=validity_hours)
    return Token(value=value, expires_at=expires_at)


class TokenStore(Protocol):
    """Durable token storage shared across processes."""

    async def load(self) -> Token | None: ...

    async def save(self, token: Token) -> None: ...


class JsonFileTokenStore:
    def __init__(self, path: str | Path) -> None:
        self.path = Path(path).expanduser()

    async def load(self) -> Token | None:
        return await asyncio.to_thread(self._read)

    async def save(self, token: Token) -> None:
        await asyncio.to_thread(self._write, token)

    def _read(self) -> Token | None:
        if not self.path.exists():
            return None
        payload = json.loads(self.path.read_text(encoding="utf-8"))
        if not isinstance(payload, dict):
            return None
        return Token.from_dict(payload)

    def _write(self, token: Token) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".token-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(token.as_dict(), handle, indent=2)
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, self.path)
        except OSError:
            Path(tmp_name).unlink(missing_ok=True)
            raise


class TokenSource(Protocol):
    name: str

    async def fetch(self) -> Token | None: ...


class StoreSource:
    """Durable store read through a TTL cache."""

    name = "store"

    def __init__(
        self,
        store: TokenStore,
        ttl_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._cached: Token | None = None
        self._fetched_at: float | None = None

    async def fetch(self) -> Token | None:
        now = self._clock()
        if self._fetched_at is not None and now - self._fetched_at < self.ttl_seconds:
            return self._cached
        try:
            token = await self.store.load()
        except (OSError, ValueError) as exc:
            logger.warning("token store unavailable: %s", exc)
            return None
        self._cached = token
        self._fetched_at = now
        return token

    def prime(self, token: Token) -> None:
        self._cached = token
        self._fetched_at = self._clock()

    def invalidate(self, stale: str | None = None) -> None:
        if stale is None or (self._cached is not None and self._cached.value == stale):
            self._cached = None
            self._fetched_at = None


class MemorySource:
    name = "memory"

    def __init__(self) -> None:
        self.token: Token | None = None

    async def fetch(self) -> Token | None:
        if self.token is None or self.token.is_expired():
            return None
        return self.token

    def invalidate(self, stale: str | None = None) -> None:
        if stale is None or (self.token is not None and self.token.value == stale):
            self.token = None


class StaticSource:
    name = "env"

    def __init__(self, value: str) -> None:
        self.value = value.strip()

    async def fetch(self) -> Token | None:
        return Token(self.value) if self.value else None


class TokenManager:
    def __init__(
        self,
        *,
        store: StoreSource | None = None,
        static_token: str = "",
        authenticate: Authenticator | None = None,
    ) -> None:
        self.store = store
        self.memory = MemorySource()
        self.authenticate = authenticate
        self.sources: list[TokenSource] = []
        if store is not None:
            self.sources.append(store)
        self.sources.append(self.memory)
        self.sources.append(StaticSource(static_token))
        self._refresh_lock = asyncio.Lock()
        self._inflight: asyncio.Future[Token] | None = None
        self.auth_calls = 0

    async def get_token(self) -> Token:
        for source in self.sources:
            token = await source.fetch()
            if token is not None:
                return token
        raise NoTokenAvailable(
            "No Portainer token available. Set PORTAINER_TOKEN or PORTAINER_USERNAME/"
            "PORTAINER_PASSWORD, or log in via /api/settings/portainer-token"
        )

    def invalidate(self, stale: str | None = None) -> None:
        """Drop cached copies of ``stale`` (or everything when None)."""
        if self.store is not None:
            self.store.invalidate(stale)
        self.memory.invalidate(stale)

    async def remember(self, token: Token) -> bool:
        """Cache a token in memory and persist it; returns whether it was persisted."""
        self.memory.token = token
        if self.store is None:
            return False
        self.store.prime(token)
        try:
            await self.store.store.save(token)
        except OSError as exc:
            logger.warning("could not persist Portainer token: %s", exc)
            return False
        return True

    async def refresh(self, stale: str | None = None) -> Token:
        """Log in again, sharing the result with concurrent callers.

        A caller whose 401 was for a token that has already been replaced gets
        the replacement without another login.
        """
        if self.authenticate is None:
            raise AuthError("Portainer credentials are not configured; cannot refresh token")
        async with self._refresh_lock:
            current = self.memory.token
            if (
                stale is not None
                and current is not None
                and current.value != stale
                and not current.is_expired()
            ):
                return current
            if self._inflight is None or self._inflight.done():
                self._inflight = asyncio.ensure_future(self._login())
            inflight = self._inflight
        return await asyncio.shield(inflight)

    async def _login(self) -> Token:
        assert self.authenticate is not None
        self.auth_calls += 1
        logger.info("refreshing Portainer token")
        token = await self.authenticate()
        persisted = await self.remember(token)
        logger.info(
            "Portainer token refreshed",
            extra={
                "persisted": persisted,
                "expires_at": str(token.expires_at),
                "logins": self.auth_calls,
            },
        )
        return token
