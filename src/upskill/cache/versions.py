"""
Version cache -- JSON ledger of installed vs. latest version per package.

The whole document is read, modified and rewritten under a single file
lock (<cache>.lock) because JSON has no per-key concurrency primitive.
Keys are written sorted so the final document does not depend on the
order in which packages were updated.

Document shape:
    {
      "widgetkit": {
        "installed": "2.1.0",
        "latest": "2.1.0",
        "lastChecked": "2026-10-18T09:00:00+00:00",
        "updateAvailable": false,
        "critical": false,
        "breaking": false
      }
    }

Entries are only deleted through an explicit remove().
"""

import json
import os
import re
import tempfile
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

import structlog
from filelock import FileLock, Timeout

from ..errors import CacheError, OperationTimeoutError

logger = structlog.get_logger()

DEFAULT_LOCK_TIMEOUT = 30.0


@dataclass
class VersionCacheEntry:
    """Installed vs. latest version of one package."""

    installed: str
    latest: str
    last_checked: str
    update_available: bool
    critical: bool = False
    breaking: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "installed": self.installed,
            "latest": self.latest,
            "lastChecked": self.last_checked,
            "updateAvailable": self.update_available,
            "critical": self.critical,
            "breaking": self.breaking,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "VersionCacheEntry":
        return cls(
            installed=str(data.get("installed", "")),
            latest=str(data.get("latest", "")),
            last_checked=str(data.get("lastChecked", "")),
            update_available=bool(data.get("updateAvailable", False)),
            critical=bool(data.get("critical", False)),
            breaking=bool(data.get("breaking", False)),
        )


def is_breaking(installed: str, latest: str) -> bool:
    """Semver-style breaking change: major bump, or minor bump while on 0.x."""
    old, new = _major_minor(installed), _major_minor(latest)
    if old is None or new is None:
        return False
    if new[0] != old[0]:
        return new[0] > old[0]
    return old[0] == 0 and new[1] > old[1]


def _major_minor(version: str) -> tuple[int, int] | None:
    match = re.match(r"^v?(\d+)(?:\.(\d+))?", version.strip())
    if not match:
        return None
    return int(match.group(1)), int(match.group(2) or 0)


class VersionCache:
    """Process-wide version ledger stored at a fixed path."""

    def __init__(
        self,
        path: Path,
        lock_timeout: float = DEFAULT_LOCK_TIMEOUT,
        clock: Callable[[], datetime] | None = None,
    ):
        self.path = path
        self.lock = FileLock(str(path) + ".lock", timeout=lock_timeout)
        self.lock_timeout = lock_timeout
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def update(
        self,
        name: str,
        installed: str,
        latest: str,
        critical: bool = False,
    ) -> VersionCacheEntry:
        """Upsert the entry for name and rewrite the document."""
        entry = VersionCacheEntry(
            installed=installed,
            latest=latest,
            last_checked=self._clock().isoformat(),
            update_available=latest != installed,
            critical=critical,
            breaking=is_breaking(installed, latest),
        )
        with self._locked(name):
            document = self._read()
            document[name] = entry.to_dict()
            self._write(document)

        logger.info(
            "cache.updated",
            package=name,
            installed=installed,
            latest=latest,
            update_available=entry.update_available,
        )
        return entry

    def get(self, name: str) -> VersionCacheEntry | None:
        with self._locked(name):
            data = self._read().get(name)
        return VersionCacheEntry.from_dict(data) if data else None

    def all(self) -> dict[str, VersionCacheEntry]:
        with self._locked():
            document = self._read()
        return {name: VersionCacheEntry.from_dict(data) for name, data in document.items()}

    def remove(self, name: str) -> bool:
        with self._locked(name):
            document = self._read()
            if name not in document:
                return False
            del document[name]
            self._write(document)
        logger.info("cache.removed", package=name)
        return True

    # ── Internals ────────────────────────────────────────────────────────

    def _locked(self, name: str | None = None):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            return self.lock.acquire()
        except Timeout as e:
            raise OperationTimeoutError(
                f"Could not lock {self.path} within {self.lock_timeout}s",
                seconds=self.lock_timeout,
                package=name,
                step="cache",
            ) from e

    def _read(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise CacheError(f"Version cache {self.path} is corrupt: {e}", step="cache") from e
        except OSError as e:
            raise CacheError(f"Cannot read version cache {self.path}: {e}", step="cache") from e
        if not isinstance(data, dict):
            raise CacheError(f"Version cache {self.path} is not a JSON object", step="cache")
        return data

    def _write(self, document: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(document, f, indent=2, sort_keys=True)
                f.write("\n")
            os.replace(tmp, self.path)
        except OSError as e:
            Path(tmp).unlink(missing_ok=True)
            raise CacheError(f"Cannot write version cache {self.path}: {e}", step="cache") from e
