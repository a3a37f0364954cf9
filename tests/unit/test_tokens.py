import base64
import json
import threading
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from opsdeck.errors import NoTokenAvailable
from opsdeck.portainer.tokens import (
    JsonFileTokenStore,
    StoreSource,
    Token,
    TokenManager,
    decode_jwt_expiry,
    token_from_jwt,
)


def _jwt(claims: dict[str, object]) -> str:
    body = base64.urlsafe_b64encode(json.dumps(claims).encode()).decode().rstrip("=")
    return f"eyJhbGciOiJIUzI1NiJ9.{body}.sig"


def test_decode_jwt_expiry() -> None:
    assert decode_jwt_expiry(_jwt({"exp": 2_000_000_000})) == datetime.fromtimestamp(
        2_000_000_000, UTC
    )
    assert decode_jwt_expiry("opaque-token") is None
    assert decode_jwt_expiry(_jwt({"sub": "admin"})) is None


def test_token_without_claims_gets_default_validity() -> None:
    token = token_from_jwt("opaque-token", validity_hours=8)
    assert token.expires_at is not None
    remaining = token.expires_at - datetime.now(UTC)
    assert timedelta(hours=7, minutes=59) < remaining <= timedelta(hours=8)


@pytest.mark.asyncio
async def test_file_store_round_trip(tmp_path: Path) -> None:
    store = JsonFileTokenStore(tmp_path / "tokens" / "portainer.json")
    assert await store.load() is None
    token = Token("abc", datetime(2030, 1, 1, tzinfo=UTC))
    await store.save(token)
    assert await store.load() == token


@pytest.mark.asyncio
async def test_sources_are_tried_in_order(tmp_path: Path) -> None:
    file_store = JsonFileTokenStore(tmp_path / "token.json")
    await file_store.save(Token("durable"))
    manager = TokenManager(store=StoreSource(file_store), static_token="env")
    manager.memory.token = Token("memory")
    assert (await manager.get_token()).value == "durable"

    (tmp_path / "token.json").unlink()
    manager.invalidate("durable")
    assert (await manager.get_token()).value == "memory"

    manager.memory.token = Token("memory", datetime.now(UTC) - timedelta(seconds=1))
    assert (await manager.get_token()).value == "env"


@pytest.mark.asyncio
async def test_no_token_anywhere_raises() -> None:
    with pytest.raises(NoTokenAvailable):
        await TokenManager().get_token()


@pytest.mark.asyncio
async def test_store_reads_are_cached_for_ttl(tmp_path: Path) -> None:
    now = [100.0]
    file_store = JsonFileTokenStore(tmp_path / "token.json")
    await file_store.save(Token("one"))
    source = StoreSource(file_store, ttl_seconds=60, clock=lambda: now[0])
    assert (await source.fetch()).value == "one"
    await file_store.save(Token("two"))
    now[0] += 30
    assert (await source.fetch()).value == "one"
    now[0] += 31
    assert (await source.fetch()).value == "two"


@pytest.mark.asyncio
async def test_refresh_persist_failure_is_not_fatal(tmp_path: Path) -> None:
    blocker = tmp_path / "file.txt"
    blocker.write_text("x", encoding="utf-8")

    async def _login() -> Token:
        return Token("fresh")

    manager = TokenManager(
        store=StoreSource(JsonFileTokenStore(blocker / "token.json")), authenticate=_login
    )
    token = await manager.refresh()
    assert token.value == "fresh"
    assert (await manager.get_token()).value == "fresh"


@pytest.mark.asyncio
async def test_refresh_skips_login_when_token_already_replaced() -> None:
    calls = 0

    async def _login() -> Token:
        nonlocal calls
        calls += 1
        return Token(f"t{calls}")

    manager = TokenManager(authenticate=_login)
    first = await manager.refresh(stale="t0")
    second = await manager.refresh(stale="t0")
    assert first == second
    assert calls == 1
    third = await manager.refresh(stale=first.value)
    assert third.value == "t2"


@pytest.mark.asyncio
async def test_file_store_io_runs_in_worker_thread(tmp_path: Path, monkeypatch) -> None:
    store = JsonFileTokenStore(tmp_path / "token.json")
    seen: list[threading.Thread] = []
    write, read = store._write, store._read

    def _recording_write(token: Token) -> None:
        seen.append(threading.current_thread())
        write(token)

    def _recording_read() -> Token | None:
        seen.append(threading.current_thread())
        return read()

    monkeypatch.setattr(store, "_write", _recording_write)
    monkeypatch.setattr(store, "_read", _recording_read)
    await store.save(Token("abc"))
    assert (await store.load()).value == "abc"
    assert len(seen) == 2
    assert all(thread is not threading.main_thread() for thread in seen)
