"""Secret store interface and the trivial backends."""

from abc import ABC, abstractmethod

from crypt_controller.exceptions import KeyNotFoundError
from crypt_controller.models import StorePayload


class Store(ABC):
    """A keyed lookup of secret payloads.

    Implementations must be safe for concurrent ``get`` calls from several
    worker threads.
    """

    @abstractmethod
    def get(self, key: str) -> StorePayload:
        """Look up a payload.

        Raises:
            KeyNotFoundError: If the key does not exist.
            InvalidDataError: If the stored value cannot be decoded.
            StoreError: For any other backend failure.

        """


class EmptyStore(Store):
    """A store without any keys."""

    def get(self, key: str) -> StorePayload:
        raise KeyNotFoundError(f"key '{key}' not found")


class FakeStore(Store):
    """A store that has every key, each holding an empty payload."""

    def get(self, key: str) -> StorePayload:  # noqa: ARG002
        return StorePayload(name="fake", data={})
