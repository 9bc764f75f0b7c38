from __future__ import annotations

import json
import logging
import secrets
import threading
from pathlib import Path

logger = logging.getLogger(__name__)

DEVICE_ID_PREFIX = "DEV-"
_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
_SUFFIX_LENGTH = 12


def generate_device_id() -> str:
    return DEVICE_ID_PREFIX + "".join(secrets.choice(_ALPHABET) for _ in range(_SUFFIX_LENGTH))


class DeviceIdentityProvider:
    """Stable per-installation device identifier, persisted in a local JSON file.

    The identifier belongs to the installation, not to a user: every account
    signed in from this installation presents the same id.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()
        self._device_id: str | None = None

    def get_device_id(self) -> str:
        with self._lock:
            if self._device_id is None:
                self._device_id = self._load() or self._create()
            return self._device_id

    def _load(self) -> str | None:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Unreadable device identity file %s, issuing a new id: %s", self.path, exc)
            return None
        device_id = data.get("device_id") if isinstance(data, dict) else None
        return device_id if isinstance(device_id, str) and device_id else None

    def _create(self) -> str:
        device_id = generate_device_id()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(json.dumps({"device_id": device_id}), encoding="utf-8")
        tmp_path.replace(self.path)
        logger.info("New device identity created at %s", self.path)
        return device_id
