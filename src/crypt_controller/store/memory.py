"""In-memory secret store."""

import threading
from typing import Any

from crypt_controller.exceptions import KeyNotFoundError, StoreConfigError
from crypt_controller.models import SECRET_TYPE_OPAQUE, StorePayload
from crypt_controller.store.base import Store


class MemoryStore(Store):
    """A dict-backed store.

    Attributes:
        entries: Payloads by key.

    """

    def __init__(self, entries: dict[str, StorePayload] | None = None) -> None:
        self.entries: dict[str, StorePayload] = dict(entries or {})
        self._lock = threading.Lock()

    def get(self, key: str) -> StorePayload:
        with self._lock:
            payload = self.entries.get(key)
        if payload is None:
            raise KeyNotFoundError(f"key '{key}' not found")
        return payload

    def put(self, key: str, payload: StorePayload) -> None:
        with self._lock:
            self.entries[key] = payload

    def delete(self, key: str) -> None:
        with self._lock:
            self.entries.pop(key, None)

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> "MemoryStore":
        """Seed a store from the ``entries`` section of the store config.

        Each entry maps a key to ``{name?, type?, data: {field: text}}``;
        data values are stored as UTF-8 bytes::

            entries:
              test/foo:
                name: foo-secret
                data:
                  foo: fooSecret

        Raises:
            StoreConfigError: If an entry is not shaped as above.

        """
        entries: dict[str, StorePayload] = {}
        raw_entries = config.get("entries") or {}
        if not isinstance(raw_entries, dict):
            raise StoreConfigError("memory store 'entries' must be a mapping")

        for key, raw in raw_entries.items():
            if not isinstance(raw, dict) or not isinstance(raw.get("data") or {}, dict):
                raise StoreConfigError(f"memory store entry '{key}' must be a mapping with a 'data' mapping")
            entries[str(key)] = StorePayload(
                name=str(raw.get("name") or ""),
                secret_type=str(raw.get("type") or SECRET_TYPE_OPAQUE),
                data={str(k): str(v).encode() for k, v in (raw.get("data") or {}).items()},
            )
        return cls(entries)
