"""Consul key/value secret store.

Values are JSON documents as understood by ``StorePayload.from_document``,
stored under the lookup key in Consul's KV store.
"""

import json
import os
from typing import Any
from urllib.parse import urlsplit

import consul
import requests
from icecream import ic

from crypt_controller.exceptions import InvalidDataError, KeyNotFoundError, StoreConfigError, StoreError
from crypt_controller.models import StorePayload
from crypt_controller.store.base import Store

DEFAULT_ADDRESS = "http://127.0.0.1:8500"
DEFAULT_PORT = 8500


class ConsulStore(Store):
    """Reads payloads through a Consul client.

    Attributes:
        address: URL of the Consul agent.
        datacenter: Datacenter to query, if not the agent's own.
        client: The ``consul.Consul`` client.

    """

    def __init__(self, address: str | None = None, token: str | None = None, datacenter: str | None = None) -> None:
        self.address = (address or os.environ.get("CONSUL_HTTP_ADDR") or DEFAULT_ADDRESS).rstrip("/")
        if "://" not in self.address:
            self.address = f"http://{self.address}"
        self.datacenter = datacenter

        try:
            parsed = urlsplit(self.address)
            self.client = consul.Consul(
                host=parsed.hostname or "127.0.0.1",
                port=parsed.port or DEFAULT_PORT,
                scheme=parsed.scheme,
                token=token or os.environ.get("CONSUL_HTTP_TOKEN"),
                dc=datacenter,
            )
        except (consul.ConsulException, ValueError) as err:
            raise StoreConfigError(f"Invalid Consul address '{self.address}': {err}") from err

    def get(self, key: str) -> StorePayload:
        ic(self.address, key)
        try:
            _, entry = self.client.kv.get(key.lstrip("/"))
        except (consul.ConsulException, requests.RequestException) as err:
            raise StoreError(f"consul request for '{key}' failed: {err}") from err

        # Missing keys come back as None, keys without a value carry Value=None
        if not isinstance(entry, dict) or entry.get("Value") is None:
            raise KeyNotFoundError(f"key '{key}' not found")
        try:
            document = json.loads(entry["Value"])
        except ValueError as err:
            raise InvalidDataError("value could not be decoded into a store object") from err

        return StorePayload.from_document(document, default_name=key.rsplit("/", 1)[-1])

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> "ConsulStore":
        """Build a store from the ``consul`` section of the store config."""
        return cls(
            address=config.get("address"),
            token=config.get("token"),
            datacenter=config.get("datacenter"),
        )
