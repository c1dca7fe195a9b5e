"""Credential persistence — one JSON file per bot storage directory."""

import json
import logging
import os
from abc import ABC, abstractmethod

log = logging.getLogger(__name__)

CREDENTIALS_FILE = "credentials.json"


class CredentialStore(ABC):
    @abstractmethod
    def get(self, key: str) -> str | None: ...

    @abstractmethod
    def set(self, key: str, value: str) -> None: ...


class MemoryCredentialStore(CredentialStore):
    """Keeps credentials for the lifetime of the process only."""

    def __init__(self, values: dict[str, str] | None = None):
        self._values: dict[str, str] = dict(values or {})

    def get(self, key: str) -> str | None:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self._values[key] = value


class FileCredentialStore(CredentialStore):
    """Key/value strings kept in ``<storage_path>/credentials.json``.

    The directory is created on first use. Writes go through a temp file and
    ``os.replace`` so a crash never leaves a truncated file behind.
    """

    def __init__(self, storage_path: str):
        self.storage_path = storage_path
        self.path = os.path.join(storage_path, CREDENTIALS_FILE)
        self._values: dict[str, str] | None = None

    def _load(self) -> dict[str, str]:
        if self._values is not None:
            return self._values
        if not os.path.exists(self.path):
            log.info("No %s in %s — starting fresh", CREDENTIALS_FILE, self.storage_path)
            self._values = {}
            return self._values
        try:
            with open(self.path) as f:
                data = json.load(f)
        except (OSError, ValueError):
            log.exception("Failed to read %s — starting fresh", self.path)
            data = {}
        if not isinstance(data, dict):
            log.error("Ignoring %s: expected an object, got %s", self.path, type(data).__name__)
            data = {}
        self._values = {str(k): str(v) for k, v in data.items() if v is not None}
        return self._values

    def get(self, key: str) -> str | None:
        return self._load().get(key)

    def set(self, key: str, value: str) -> None:
        values = self._load()
        values[key] = value
        os.makedirs(self.storage_path, exist_ok=True)
        tmp = self.path + ".tmp"
        with open(tmp, "w") as f:
            json.dump(values, f, indent=2)
        os.replace(tmp, self.path)
        log.debug("Stored %s in %s", key, self.path)
