"""Durable local store: one JSON file per key under the state directory.

Records are wrapped as ``{"data": ..., "ts": <epoch seconds>}`` so readers can
treat old snapshots as absent. This is an acceleration path, never the source
of truth, so nothing here raises.
"""

import json
import logging
import os
import time
from pathlib import Path
from typing import Any, Callable, Optional

from . import config

logger = logging.getLogger(__name__)

USER_KEY = "jv_user"
TOKEN_KEY = "jv_token"
COMPLAINTS_KEY = "jv_complaints"
ROSTER_KEY = "jv_users"
LEADERBOARD_KEY = "jv_leaderboard"

ALL_KEYS = (USER_KEY, TOKEN_KEY, COMPLAINTS_KEY, ROSTER_KEY, LEADERBOARD_KEY)


class LocalStore:
    def __init__(self, root: Optional[Path] = None, clock: Callable[[], float] = time.time):
        self.root = Path(root) if root is not None else config.STATE_DIR
        self._clock = clock

    def _path(self, key: str) -> Path:
        return self.root / f"{key}.json"

    def read(self, key: str, max_age: Optional[float] = None) -> Any:
        """Stored value for *key*, or None when missing, unreadable or older than *max_age*."""
        path = self._path(key)
        try:
            raw = path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.debug("Store read %s failed: %s", key, e)
            return None
        try:
            record = json.loads(raw.decode("utf-8"))
        except ValueError:
            logger.debug("Store record %s is corrupt, dropping it", key)
            self.remove(key)
            return None
        if not isinstance(record, dict) or "data" not in record:
            self.remove(key)
            return None
        if max_age is not None:
            ts = record.get("ts")
            if not isinstance(ts, (int, float)) or self._clock() - ts > max_age:
                self.remove(key)
                return None
        return record["data"]

    def write(self, key: str, value: Any) -> bool:
        path = self._path(key)
        tmp = path.with_suffix(".tmp")
        try:
            payload = json.dumps({"data": value, "ts": self._clock()})
            self.root.mkdir(parents=True, exist_ok=True)
            tmp.write_text(payload, encoding="utf-8")
            os.replace(tmp, path)
            return True
        except (OSError, TypeError, ValueError) as e:
            logger.debug("Store write %s failed: %s", key, e)
            return False

    def remove(self, key: str) -> None:
        try:
            self._path(key).unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.debug("Store remove %s failed: %s", key, e)

    def clear(self) -> None:
        for key in ALL_KEYS:
            self.remove(key)
