"""HashiCorp Vault KV (version 2) secret store.

Each field of the Vault secret becomes a field of the payload. String
values are stored as UTF-8; any other value type is rejected.
"""

import os
from typing import Any

import hvac
import requests
from icecream import ic

from crypt_controller.exceptions import InvalidDataError, KeyNotFoundError, StoreError
from crypt_controller.models import StorePayload
from crypt_controller.store.base import Store

DEFAULT_ADDRESS = "https://127.0.0.1:8200"
DEFAULT_MOUNT = "secret"
_TIMEOUT = 10


class VaultStore(Store):
    """Reads payloads through an hvac client.

    Attributes:
        address: Base URL of the Vault server.
        mount: Mount path of the KV v2 engine.
        client: The ``hvac.Client``.

    """

    def __init__(
        self,
        address: str | None = None,
        token: str | None = None,
        mount: str = DEFAULT_MOUNT,
        verify: bool | str = True,
    ) -> None:
        self.address = (address or os.environ.get("VAULT_ADDR") or DEFAULT_ADDRESS).rstrip("/")
        self.mount = mount.strip("/")
        self.client = hvac.Client(
            url=self.address,
            token=token or os.environ.get("VAULT_TOKEN"),
            verify=verify,
            timeout=_TIMEOUT,
        )

    def get(self, key: str) -> StorePayload:
        ic(self.address, self.mount, key)
        try:
            response = self.client.secrets.kv.v2.read_secret_version(
                path=key.lstrip("/"),
                mount_point=self.mount,
                raise_on_deleted_version=True,
            )
        except hvac.exceptions.InvalidPath as err:
            raise KeyNotFoundError(f"key '{key}' not found") from err
        except (hvac.exceptions.VaultError, requests.RequestException) as err:
            raise StoreError(f"vault request for '{key}' failed: {err}") from err

        data = ((response if isinstance(response, dict) else {}).get("data") or {}).get("data")
        if data is None:
            raise KeyNotFoundError(f"key '{key}' not found")
        return StorePayload(name=key.rsplit("/", 1)[-1], data=self._to_bytes(data))

    @staticmethod
    def _to_bytes(data: dict[str, Any]) -> dict[str, bytes]:
        if not isinstance(data, dict):
            raise InvalidDataError("value could not be decoded into a store object")
        result: dict[str, bytes] = {}
        for field, value in data.items():
            if isinstance(value, bytes):
                result[field] = value
            elif isinstance(value, str):
                result[field] = value.encode()
            else:
                raise InvalidDataError("value could not be decoded into a store object")
        return result

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> "VaultStore":
        """Build a store from the ``vault`` section of the store config."""
        return cls(
            address=config.get("address"),
            token=config.get("token"),
            mount=config.get("mount") or DEFAULT_MOUNT,
            verify=config.get("verify", True),
        )
