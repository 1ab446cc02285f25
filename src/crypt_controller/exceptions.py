"""Custom exceptions for crypt-controller.

This module defines the exception hierarchy used throughout the controller
to separate retryable failures from conditions that should simply be logged.
"""


class CryptControllerError(Exception):
    """Base exception for all crypt-controller errors.

    All custom exceptions in this package inherit from this class,
    allowing callers to catch all controller errors with a single
    except clause if desired.
    """

    pass


class ClusterConnectionError(CryptControllerError):
    """Raised when connection to the Kubernetes cluster fails.

    This can occur when:
    - The kubeconfig is invalid or missing
    - No in-cluster service account is available
    - The cluster is unreachable
    """

    pass


class CacheSyncTimeoutError(CryptControllerError):
    """Raised when the resource mirrors do not finish their initial sync in time.

    Workers never start in this case; the process is expected to exit.
    """

    pass


class MirrorUnavailableError(CryptControllerError):
    """Raised when a resource mirror cannot be read.

    The mirror has either been stopped or has not completed its initial
    list. Convergence passes hitting this are requeued with backoff.
    """

    pass


class InvalidKeyError(CryptControllerError):
    """Raised when a work queue key is not of the form ``name`` or ``namespace/name``."""

    pass


class CryptParsingError(CryptControllerError):
    """Raised when a Crypt object does not match the expected schema."""

    pass


class StoreError(CryptControllerError):
    """Base exception for secret store lookups."""

    pass


class KeyNotFoundError(StoreError):
    """Raised when the requested key does not exist in the store."""

    pass


class InvalidDataError(StoreError):
    """Raised when a stored value could not be decoded into a store payload."""

    pass


class StoreConfigError(CryptControllerError):
    """Raised when the store configuration file is missing or malformed."""

    pass


class InvalidStoreTypeError(StoreConfigError):
    """Raised when the requested store backend does not exist.

    Supported backends: empty, fake, memory, consul, vault.
    """

    pass
