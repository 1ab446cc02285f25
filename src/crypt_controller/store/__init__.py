"""Secret store subpackage.

This package contains the store interface and its pluggable backends.
"""

from crypt_controller.store.base import EmptyStore, FakeStore, Store
from crypt_controller.store.consul import ConsulStore
from crypt_controller.store.factory import STORE_TYPES, make_store
from crypt_controller.store.memory import MemoryStore
from crypt_controller.store.vault import VaultStore

__all__ = [
    "Store",
    "EmptyStore",
    "FakeStore",
    "MemoryStore",
    "ConsulStore",
    "VaultStore",
    "STORE_TYPES",
    "make_store",
]
