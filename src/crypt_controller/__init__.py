"""crypt-controller: keep Kubernetes secrets in sync with Crypt resources.

A Crypt names secrets held in an external store and the namespaces they
should be copied to. The controller materializes every secret in every
matching namespace and keeps the copies up to date.

Example usage:
    from crypt_controller import Cluster, Controller, EventRecorder, make_store

    cluster = Cluster()
    mirrors = [cluster.namespace_mirror(), cluster.secret_mirror(), cluster.crypt_mirror()]
    controller = Controller(
        cluster.core_api,
        *mirrors,
        store=make_store("memory"),
        recorder=EventRecorder(cluster.core_api),
    )
"""

__version__ = "0.1.0"

from crypt_controller.cli import cli
from crypt_controller.cluster import Cluster
from crypt_controller.core.controller import Controller
from crypt_controller.core.events import EventRecorder
from crypt_controller.core.mirror import ResourceMirror
from crypt_controller.core.workqueue import RateLimitingQueue
from crypt_controller.exceptions import (
    CacheSyncTimeoutError,
    ClusterConnectionError,
    CryptControllerError,
    CryptParsingError,
    InvalidDataError,
    InvalidKeyError,
    InvalidStoreTypeError,
    KeyNotFoundError,
    MirrorUnavailableError,
    StoreConfigError,
    StoreError,
)
from crypt_controller.models import Crypt, SecretDefinition, StorePayload
from crypt_controller.store import make_store

__all__ = [
    # Version
    "__version__",
    # Main CLI
    "cli",
    # Classes
    "Cluster",
    "Controller",
    "EventRecorder",
    "RateLimitingQueue",
    "ResourceMirror",
    "Crypt",
    "SecretDefinition",
    "StorePayload",
    "make_store",
    # Exceptions
    "CryptControllerError",
    "ClusterConnectionError",
    "CacheSyncTimeoutError",
    "MirrorUnavailableError",
    "InvalidKeyError",
    "CryptParsingError",
    "StoreError",
    "KeyNotFoundError",
    "InvalidDataError",
    "StoreConfigError",
    "InvalidStoreTypeError",
]
