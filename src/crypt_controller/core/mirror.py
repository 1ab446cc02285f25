"""Locally cached view of a watched Kubernetes resource kind.

A ResourceMirror lists a resource kind, then follows the watch stream
from the list's resourceVersion, keeping an index of every object keyed
by ``namespace/name``. Registered handlers are notified of additions,
updates and deletions. Delete notifications always carry the last known
state of the object.

Objects are stored as plain dictionaries in their API (camelCase) form
regardless of whether the list call returns typed models or custom
objects.
"""

import random
import threading
from collections.abc import Callable
from typing import Any

from icecream import ic
from kubernetes import client, watch
from kubernetes.client import ApiException
from rich.markup import escape

from crypt_controller import console
from crypt_controller.exceptions import InvalidKeyError, MirrorUnavailableError

Handler = Callable[..., None]

# Watch streams are reopened after this many seconds even without errors
_WATCH_TIMEOUT_SECONDS = 300
_MAX_BACKOFF_SECONDS = 30


def meta_namespace_key(obj: dict[str, Any]) -> str:
    """Return the ``namespace/name`` key of an object (``name`` if cluster-scoped)."""
    metadata = obj.get("metadata") or {}
    name = metadata.get("name") or ""
    namespace = metadata.get("namespace") or ""
    return f"{namespace}/{name}" if namespace else name


def split_meta_namespace_key(key: str) -> tuple[str, str]:
    """Split a key produced by ``meta_namespace_key``.

    Args:
        key: Either ``name`` or ``namespace/name``.

    Returns:
        ``(namespace, name)``; namespace is empty for cluster-scoped keys.

    Raises:
        InvalidKeyError: If the key has more than one separator or an empty name.

    """
    if not isinstance(key, str):
        raise InvalidKeyError(f"expected string key but got {key!r}")
    parts = key.split("/")
    if len(parts) == 1:
        namespace, name = "", parts[0]
    elif len(parts) == 2:
        namespace, name = parts
    else:
        raise InvalidKeyError(f"unexpected key format: {key!r}")
    if not name:
        raise InvalidKeyError(f"unexpected key format: {key!r}")
    return namespace, name


def _serialize(obj: Any) -> dict[str, Any]:
    if isinstance(obj, dict):
        return obj
    return client.ApiClient().sanitize_for_serialization(obj)


def _is_bare(obj: dict[str, Any]) -> bool:
    """Return True if the object holds nothing beyond its type and metadata."""
    return not set(obj) - {"apiVersion", "kind", "metadata"}


def _resource_version(response: Any) -> str | None:
    if isinstance(response, dict):
        return (response.get("metadata") or {}).get("resourceVersion")
    metadata = getattr(response, "metadata", None)
    return getattr(metadata, "resource_version", None)


def _items(response: Any) -> list[Any]:
    if isinstance(response, dict):
        return response.get("items") or []
    return response.items or []


class ResourceMirror:
    """List/watch cache of one resource kind.

    Attributes:
        name: Resource kind name, used in log output.
        list_func: API call listing the kind across all namespaces, also
            used for the watch stream.
        list_kwargs: Extra keyword arguments for ``list_func``.

    """

    def __init__(self, name: str, list_func: Callable[..., Any], **list_kwargs: Any) -> None:
        self.name = name
        self.list_func = list_func
        self.list_kwargs = list_kwargs
        self._index: dict[str, dict[str, Any]] = {}
        self._lock = threading.RLock()
        self._handlers: list[tuple[Handler | None, Handler | None, Handler | None]] = []
        self._synced = threading.Event()
        self._stopped = threading.Event()
        self._thread: threading.Thread | None = None
        self._watcher: watch.Watch | None = None

    def add_event_handler(
        self,
        on_add: Handler | None = None,
        on_update: Handler | None = None,
        on_delete: Handler | None = None,
    ) -> None:
        """Register callbacks.

        ``on_add(obj)``, ``on_update(old, new)`` and ``on_delete(obj)`` are
        called from the mirror's thread after the index has been updated.
        """
        self._handlers.append((on_add, on_update, on_delete))

    def has_synced(self) -> bool:
        """Whether the initial list has been loaded into the index."""
        return self._synced.is_set()

    def wait_for_sync(self, timeout: float | None = None) -> bool:
        return self._synced.wait(timeout=timeout)

    def get(self, key: str) -> dict[str, Any] | None:
        """Return the cached object for ``key``, or None if it is not known.

        Raises:
            MirrorUnavailableError: If the mirror is stopped or not yet synced.

        """
        self._check_readable()
        with self._lock:
            return self._index.get(key)

    def list_objects(self, namespace: str | None = None) -> list[dict[str, Any]]:
        """Return every cached object, optionally only those in ``namespace``.

        Raises:
            MirrorUnavailableError: If the mirror is stopped or not yet synced.

        """
        self._check_readable()
        with self._lock:
            objects = list(self._index.values())
        if namespace is None:
            return objects
        return [obj for obj in objects if (obj.get("metadata") or {}).get("namespace", "") == namespace]

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._index)

    def _check_readable(self) -> None:
        if self._stopped.is_set():
            raise MirrorUnavailableError(f"{self.name} mirror is stopped")
        if not self._synced.is_set():
            raise MirrorUnavailableError(f"{self.name} mirror has not synced")

    def replace(self, objects: list[Any]) -> None:
        """Replace the index with a fresh list result.

        New objects are announced as additions, known objects as updates and
        objects missing from the list as deletions with their last known
        state. Marks the mirror as synced.
        """
        fresh = {}
        for obj in objects:
            serialized = _serialize(obj)
            fresh[meta_namespace_key(serialized)] = serialized

        with self._lock:
            previous = self._index
            self._index = fresh

        self._synced.set()

        for key, obj in fresh.items():
            old = previous.get(key)
            if old is None:
                self._notify_add(obj)
            else:
                self._notify_update(old, obj)
        for key, old in previous.items():
            if key not in fresh:
                self._notify_delete(old)

    def apply(self, event_type: str, obj: Any) -> None:
        """Apply one watch event to the index and notify handlers."""
        if event_type not in ("ADDED", "MODIFIED", "DELETED"):
            ic(self.name, event_type)
            return

        serialized = _serialize(obj)
        key = meta_namespace_key(serialized)

        with self._lock:
            if event_type == "DELETED":
                old = self._index.pop(key, None)
            else:
                old = self._index.get(key)
                self._index[key] = serialized

        match event_type:
            case "DELETED":
                # The event carries the final state; a bare reference falls back to the cache
                self._notify_delete(old if old is not None and _is_bare(serialized) else serialized)
            case _ if old is None:
                self._notify_add(serialized)
            case _:
                self._notify_update(old, serialized)

    def _notify_add(self, obj: dict[str, Any]) -> None:
        for on_add, _, _ in self._handlers:
            if on_add is not None:
                self._dispatch(on_add, obj)

    def _notify_update(self, old: dict[str, Any], new: dict[str, Any]) -> None:
        for _, on_update, _ in self._handlers:
            if on_update is not None:
                self._dispatch(on_update, old, new)

    def _notify_delete(self, obj: dict[str, Any]) -> None:
        for _, _, on_delete in self._handlers:
            if on_delete is not None:
                self._dispatch(on_delete, obj)

    def _dispatch(self, handler: Handler, *args: Any) -> None:
        # A failing handler must not stop the watch loop or the other handlers
        try:
            handler(*args)
        except Exception as err:  # noqa: BLE001
            console.error(f"{self.name} event handler failed: {escape(str(err))}")

    def start(self) -> None:
        """Run the list/watch loop in a background thread."""
        self._thread = threading.Thread(target=self.run, name=f"{self.name}-mirror", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Stop the list/watch loop and interrupt any open watch stream."""
        self._stopped.set()
        watcher = self._watcher
        if watcher is not None:
            watcher.stop()

    def join(self, timeout: float | None = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout=timeout)

    def _list(self) -> str | None:
        response = self.list_func(**self.list_kwargs)
        self.replace(_items(response))
        return _resource_version(response)

    def run(self) -> None:
        """List, then watch until stopped.

        An expired resourceVersion (410 Gone) triggers a re-list. Other
        failures are retried with exponential backoff and jitter.
        """
        resource_version: str | None = None
        backoff = 1

        while not self._stopped.is_set():
            try:
                if resource_version is None:
                    resource_version = self._list()
                    console.step(f"{self.name} mirror synced at resourceVersion {resource_version}")

                self._watcher = watch.Watch()
                stream = self._watcher.stream(
                    self.list_func,
                    resource_version=resource_version,
                    timeout_seconds=_WATCH_TIMEOUT_SECONDS,
                    **self.list_kwargs,
                )
                for event in stream:
                    if self._stopped.is_set():
                        break
                    event_type = event.get("type", "")
                    raw = event.get("raw_object") or event.get("object")
                    if event_type == "ERROR":
                        if isinstance(raw, dict) and raw.get("code") == 410:
                            resource_version = None
                            break
                        continue
                    if event_type == "BOOKMARK":
                        resource_version = (raw.get("metadata") or {}).get("resourceVersion", resource_version)
                        continue
                    self.apply(event_type, raw)
                    resource_version = (raw.get("metadata") or {}).get("resourceVersion", resource_version)
                backoff = 1
            except ApiException as err:
                if err.status == 410:
                    console.warning(f"{self.name} watch resourceVersion expired, re-listing")
                    resource_version = None
                    continue
                console.error(f"{self.name} watch failed: {escape(str(err.reason))} (status {err.status})")
                backoff = self._backoff(backoff)
            except Exception as err:  # noqa: BLE001
                console.error(f"{self.name} watch failed: {escape(str(err))}")
                backoff = self._backoff(backoff)
            finally:
                if self._watcher is not None:
                    self._watcher.stop()
                    self._watcher = None

    def _backoff(self, seconds: int) -> int:
        self._stopped.wait(timeout=seconds * (0.5 + random.random()))  # noqa: S311
        return min(seconds * 2, _MAX_BACKOFF_SECONDS)


def wait_for_cache_sync(mirrors: list[ResourceMirror], timeout: float, stop: threading.Event | None = None) -> bool:
    """Wait until every mirror has synced.

    Args:
        mirrors: Mirrors to wait for.
        timeout: Overall time budget in seconds.
        stop: Optional shutdown signal that aborts the wait.

    Returns:
        True if every mirror synced in time.

    """
    deadline = threading.Event()
    timer = threading.Timer(timeout, deadline.set)
    timer.daemon = True
    timer.start()
    try:
        while not deadline.is_set():
            if all(mirror.has_synced() for mirror in mirrors):
                return True
            if stop is not None and stop.is_set():
                return False
            deadline.wait(timeout=0.1)
        return all(mirror.has_synced() for mirror in mirrors)
    finally:
        timer.cancel()
