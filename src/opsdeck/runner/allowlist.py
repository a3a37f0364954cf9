"""Persisted allowlist of operation targets.

The allowlist is the only thing that decides which repositories, compose
projects and containers the gateway may touch. It is stored as a JSON
document, loaded once at startup, and replaced wholesale (never merged) by
the management endpoint.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from opsdeck.errors import InvalidOperation, NotAllowlisted, ValidationError
from opsdeck.runner.operations import VALID_OPERATIONS, OperationRequest

logger = logging.getLogger(__name__)

ALLOWLIST_FILENAME = "allowlist.json"
_KEYS = ("repo_paths", "compose_projects", "container_names")


@dataclass(frozen=True, slots=True)
class AllowlistConfig:
    repo_paths: frozenset[str] = field(default_factory=frozenset)
    compose_projects: frozenset[str] = field(default_factory=frozenset)
    container_names: frozenset[str] = field(default_factory=frozenset)

    @classmethod
    def from_dict(cls, payload: Any) -> AllowlistConfig:
        """Build from the persisted/wire shape; every key is required."""
        if not isinstance(payload, dict):
            raise ValidationError("Invalid allowlist format")
        values: dict[str, frozenset[str]] = {}
        for key in _KEYS:
            raw = payload.get(key)
            if not isinstance(raw, list) or not all(isinstance(item, str) for item in raw):
                raise ValidationError(f"Invalid allowlist format: {key} must be a list of strings")
            values[key] = frozenset(item.strip() for item in raw if item.strip())
        return cls(**values)

    def to_dict(self) -> dict[str, list[str]]:
        return {
            "repo_paths": sorted(self.repo_paths),
            "compose_projects": sorted(self.compose_projects),
            "container_names": sorted(self.container_names),
        }

    def counts(self) -> dict[str, int]:
        return {
            "repos": len(self.repo_paths),
            "projects": len(self.compose_projects),
            "containers": len(self.container_names),
        }


DEFAULT_ALLOWLIST = AllowlistConfig(container_names=frozenset({"portainer"}))


def validate_request(request: OperationRequest, config: AllowlistConfig) -> ValidationError | None:
    """Check a request against an allowlist snapshot. Pure; returns the error instead of raising."""
    target = request.target
    if target.repo_path and target.repo_path not in config.repo_paths:
        return NotAllowlisted(f"Repository path not in allowlist: {target.repo_path}")
    if target.compose_project and target.compose_project not in config.compose_projects:
        return NotAllowlisted(f"Compose project not in allowlist: {target.compose_project}")
    if target.container_name and target.container_name not in config.container_names:
        return NotAllowlisted(f"Container name not in allowlist: {target.container_name}")
    if request.operation not in VALID_OPERATIONS:
        return InvalidOperation(f"Invalid operation: {request.operation}")
    return None


class AllowlistStore:
    """Reads and writes the allowlist document."""

    def __init__(self, path: Path) -> None:
        self.path = path

    @classmethod
    def in_dir(cls, data_dir: str | Path) -> AllowlistStore:
        return cls(Path(data_dir).expanduser() / ALLOWLIST_FILENAME)

    def load(self) -> AllowlistConfig:
        if not self.path.exists():
            logger.info("allowlist file not found, using defaults", extra={"path": str(self.path)})
            return DEFAULT_ALLOWLIST
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
            return AllowlistConfig.from_dict(payload)
        except (OSError, json.JSONDecodeError, ValidationError) as exc:
            logger.error(
                "failed to load allowlist, using defaults",
                extra={"path": str(self.path), "error": str(exc)},
            )
            return DEFAULT_ALLOWLIST

    def save(self, config: AllowlistConfig) -> None:
        """Write the full document via a temp file and rename."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=".allowlist-", suffix=".json", dir=str(self.path.parent)
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(config.to_dict(), handle, indent=2)
                handle.write("\n")
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise


class AllowlistHolder:
    """Process-wide cell holding the current allowlist; replace() is the only writer."""

    def __init__(self, store: AllowlistStore, initial: AllowlistConfig | None = None) -> None:
        self._store = store
        self._lock = threading.Lock()
        self._current = initial if initial is not None else store.load()

    @property
    def store(self) -> AllowlistStore:
        return self._store

    def get(self) -> AllowlistConfig:
        return self._current

    def replace(self, config: AllowlistConfig) -> AllowlistConfig:
        with self._lock:
            self._store.save(config)
            self._current = config
        logger.info("allowlist updated", extra=config.counts())
        return config
