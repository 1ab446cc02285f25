"""Store backend selection.

The store config is an optional YAML file with one section per backend::

    consul:
      address: http://consul.service:8500
    vault:
      address: https://vault.service:8200
      mount: secret
    memory:
      entries:
        test/foo:
          data:
            foo: fooSecret
"""

from typing import Any

import yaml
from icecream import ic

from crypt_controller.exceptions import InvalidStoreTypeError, StoreConfigError
from crypt_controller.store.base import EmptyStore, FakeStore, Store
from crypt_controller.store.consul import ConsulStore
from crypt_controller.store.memory import MemoryStore
from crypt_controller.store.vault import VaultStore

STORE_TYPES = ("empty", "fake", "memory", "consul", "vault")


def load_store_config(config_path: str | None) -> dict[str, Any]:
    """Load the store config file.

    Args:
        config_path: Path to the YAML file, or None for an empty config.

    Returns:
        The parsed config mapping.

    Raises:
        StoreConfigError: If the file does not exist, is malformed, or is
            not a YAML mapping.

    """
    if not config_path:
        return {}
    try:
        with open(config_path) as stream:
            config = yaml.safe_load(stream)
    except FileNotFoundError as err:
        raise StoreConfigError(f"Store config '{config_path}' does not exist") from err
    except yaml.YAMLError as err:
        raise StoreConfigError(f"Store config '{config_path}' contains malformed YAML: {err}") from err

    if config is None:
        return {}
    if not isinstance(config, dict):
        raise StoreConfigError(f"Store config '{config_path}' is not a YAML mapping")
    return config


def make_store(store_type: str, config_path: str | None = None) -> Store:
    """Create the store backend named by ``store_type``.

    Args:
        store_type: One of ``STORE_TYPES``, case-insensitive.
        config_path: Optional path to the store config file.

    Returns:
        The initialized store.

    Raises:
        InvalidStoreTypeError: If the store type is unknown.
        StoreConfigError: If the config file cannot be used.

    """
    config = load_store_config(config_path)
    normalized = (store_type or "").strip().lower()
    section = config.get(normalized) or {}
    if not isinstance(section, dict):
        raise StoreConfigError(f"Store config section '{normalized}' must be a mapping")
    ic(normalized, config_path)

    match normalized:
        case "empty":
            return EmptyStore()
        case "fake":
            return FakeStore()
        case "memory":
            return MemoryStore.from_config(section)
        case "consul":
            return ConsulStore.from_config(section)
        case "vault":
            return VaultStore.from_config(section)
        case _:
            raise InvalidStoreTypeError(f"invalid store type '{store_type}', expected one of: {', '.join(STORE_TYPES)}")
