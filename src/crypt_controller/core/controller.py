"""The Crypt controller.

This module wires the resource mirrors, the work queue and the secret
store together. Change notifications for Crypts, namespaces and owned
secrets are turned into Crypt keys on the work queue; a pool of worker
threads pulls keys and runs a convergence pass for each one.
"""

import threading
from typing import Any

from icecream import ic
from kubernetes import client
from kubernetes.client import ApiException
from rich.markup import escape
from urllib3.exceptions import HTTPError

from crypt_controller import console
from crypt_controller.core.events import EventRecorder
from crypt_controller.core.matching import match_namespaces, pattern_matches
from crypt_controller.core.mirror import (
    ResourceMirror,
    meta_namespace_key,
    split_meta_namespace_key,
    wait_for_cache_sync,
)
from crypt_controller.core.workqueue import RateLimitingQueue
from crypt_controller.exceptions import (
    CacheSyncTimeoutError,
    CryptParsingError,
    InvalidDataError,
    InvalidKeyError,
    MirrorUnavailableError,
    StoreError,
)
from crypt_controller.models import Crypt, EventType
from crypt_controller.secrets.materialize import new_secret, upsert_secret
from crypt_controller.secrets.ownership import controller_ref, is_controlled_by, resolve_owner
from crypt_controller.store.base import Store

# Event reason and message used when a Crypt is synced
SUCCESS_SYNCED = "Synced"
MESSAGE_RESOURCE_SYNCED = "Crypt synced successfully"

DEFAULT_WORKERS = 3
CACHE_SYNC_TIMEOUT_SECONDS = 300
DELETE_GRACE_PERIOD_SECONDS = 5
_WORKER_RESTART_SECONDS = 1


class Controller:
    """Keeps target secrets in sync with Crypt resources.

    Attributes:
        core_api: Client used to write and delete target secrets.
        namespaces: Mirror of all namespaces.
        secrets: Mirror of all secrets.
        crypts: Mirror of all Crypts.
        store: Source of secret payloads.
        recorder: Emits events against Crypts.
        queue: Pending Crypt keys.
        cascade_delete: Delete target secrets as soon as their Crypt is deleted.

    """

    def __init__(
        self,
        core_api: client.CoreV1Api,
        namespaces: ResourceMirror,
        secrets: ResourceMirror,
        crypts: ResourceMirror,
        store: Store,
        recorder: EventRecorder,
        *,
        queue: RateLimitingQueue | None = None,
        cascade_delete: bool = False,
    ) -> None:
        self.core_api = core_api
        self.namespaces = namespaces
        self.secrets = secrets
        self.crypts = crypts
        self.store = store
        self.recorder = recorder
        self.queue = queue if queue is not None else RateLimitingQueue(name="crypt-controller")
        self.cascade_delete = cascade_delete

        crypts.add_event_handler(
            on_add=self.enqueue_crypt,
            on_update=lambda old, new: self.enqueue_crypt(new),
            on_delete=self.handle_crypt_delete if cascade_delete else None,
        )
        secrets.add_event_handler(on_delete=self.handle_secret_delete)
        namespaces.add_event_handler(on_add=self.handle_namespace_add)

    def run(
        self,
        workers: int,
        stop: threading.Event,
        sync_timeout: float = CACHE_SYNC_TIMEOUT_SECONDS,
    ) -> None:
        """Run workers until ``stop`` is set.

        Workers start once every mirror has synced. On stop the queue is
        shut down, in-flight passes finish and the remaining keys drain.

        Args:
            workers: Number of worker threads.
            stop: Shutdown signal.
            sync_timeout: Seconds to wait for the initial mirror sync.

        Raises:
            CacheSyncTimeoutError: If the mirrors did not sync in time.

        """
        console.action("Starting Crypt controller")
        threads: list[threading.Thread] = []
        try:
            if not wait_for_cache_sync([self.namespaces, self.secrets, self.crypts], sync_timeout, stop):
                if stop.is_set():
                    return
                raise CacheSyncTimeoutError("failed to wait for caches to sync")

            console.action(f"Starting {workers} workers")
            for index in range(workers):
                thread = threading.Thread(target=self._run_worker, args=(stop,), name=f"worker-{index}")
                thread.start()
                threads.append(thread)
            console.success("Started workers")

            stop.wait()
            console.warning("Stopping workers")
        finally:
            self.queue.shut_down()
            for thread in threads:
                thread.join()

    def _run_worker(self, stop: threading.Event) -> None:
        # Restart the processing loop after an unexpected error until shutdown
        while True:
            try:
                while self.process_next_work_item():
                    pass
                return
            except Exception as err:  # noqa: BLE001
                console.error(f"Worker crashed: {escape(repr(err))}")
            stop.wait(timeout=_WORKER_RESTART_SECONDS)

    def process_next_work_item(self) -> bool:
        """Process one key from the queue.

        Returns:
            False once the queue has shut down and drained, True otherwise.

        """
        key, shutdown = self.queue.get()
        if shutdown:
            return False
        if key is None:
            return True

        try:
            if not isinstance(key, str):
                self.queue.forget(key)
                console.error(f"Expected string in queue but got {escape(repr(key))}")
                return True

            try:
                self.sync_handler(key)
            except MirrorUnavailableError as err:
                self.queue.add_rate_limited(key)
                console.error(f"Error syncing {console.highlight(key)}: {escape(str(err))}, requeuing")
                return True

            self.queue.forget(key)
            console.success(f"Successfully synced {console.highlight(key)}")
            return True
        finally:
            self.queue.done(key)

    def enqueue_crypt(self, obj: dict[str, Any]) -> None:
        self.queue.add(meta_namespace_key(obj))

    def sync_handler(self, key: str) -> None:
        """Run one convergence pass for the Crypt identified by ``key``.

        Every secret definition is materialized in every namespace the
        Crypt's patterns currently match. Failures affecting a single
        definition or namespace are logged and skipped.

        Args:
            key: ``namespace/name`` of the Crypt.

        Raises:
            MirrorUnavailableError: If the Crypt or namespace mirror cannot
                be read; the pass should be retried.

        """
        try:
            split_meta_namespace_key(key)
        except InvalidKeyError as err:
            console.error(f"Invalid resource key: {escape(str(err))}")
            return

        obj = self.crypts.get(key)
        if obj is None:
            console.warning(f"Crypt {console.highlight(key)} in work queue no longer exists")
            return

        try:
            crypt = Crypt.from_dict(obj)
        except CryptParsingError as err:
            console.error(f"Could not parse Crypt {console.highlight(key)}: {escape(str(err))}")
            return

        targets = self.matching_namespaces(crypt)
        ic(key, targets)

        for definition in crypt.secrets:
            if not targets:
                break
            try:
                payload = self.store.get(definition.key)
            except StoreError as err:
                console.warning(
                    f"Could not get value for key {console.highlight(definition.key)} from store: {escape(str(err))}"
                )
                continue

            for namespace in targets:
                try:
                    upsert_secret(self.core_api, new_secret(payload, definition, crypt, namespace))
                except InvalidDataError as err:
                    console.warning(f"Could not build secret for {console.highlight(key)}: {escape(str(err))}")
                    break
                except ApiException as err:
                    console.warning(
                        f"Could not create secret for {console.highlight(key)} in namespace "
                        f"{console.highlight(namespace)}: {escape(str(err.reason))} (status {err.status})"
                    )
                except HTTPError as err:
                    console.warning(
                        f"Could not reach the API server to write secret for {console.highlight(key)} in namespace "
                        f"{console.highlight(namespace)}: {escape(str(err))}"
                    )

        self.recorder.event(obj, EventType.NORMAL, SUCCESS_SYNCED, MESSAGE_RESOURCE_SYNCED)

    def matching_namespaces(self, crypt: Crypt) -> list[str]:
        """Return the namespaces currently selected by the Crypt's patterns."""
        names = sorted(ns["metadata"]["name"] for ns in self.namespaces.list_objects())
        return match_namespaces(crypt.namespaces, names)

    def handle_namespace_add(self, obj: dict[str, Any]) -> None:
        """Enqueue every Crypt with a pattern selecting the new namespace."""
        # Crypts announced by the initial list are enqueued by their own add events
        if not self.crypts.has_synced():
            return

        name = obj["metadata"]["name"]
        for crypt in self.crypts.list_objects():
            patterns = (crypt.get("spec") or {}).get("namespaces") or []
            if any(isinstance(p, str) and pattern_matches(p, name) for p in patterns):
                self.enqueue_crypt(crypt)

    def handle_secret_delete(self, obj: dict[str, Any]) -> None:
        """Enqueue the live Crypt owning a deleted secret so it is recreated."""
        if not self.crypts.has_synced():
            return

        owner = resolve_owner(obj, self.crypts)
        if owner is None:
            ref = controller_ref(obj)
            if ref is not None:
                ic(meta_namespace_key(obj), ref.get("kind"), ref.get("name"))
            return

        console.step(
            f"Secret {console.highlight(meta_namespace_key(obj))} deleted, "
            f"resyncing {console.highlight(meta_namespace_key(owner))}"
        )
        self.enqueue_crypt(owner)

    def handle_crypt_delete(self, obj: dict[str, Any]) -> None:
        """Delete the target secrets of a deleted Crypt.

        Secrets the mirror shows as controlled by something else are left
        alone. A definition without a name is resolved through the store.
        """
        try:
            crypt = Crypt.from_dict(obj)
        except CryptParsingError as err:
            console.error(f"Could not parse deleted Crypt: {escape(str(err))}")
            return

        targets = self.matching_namespaces(crypt)
        ic(crypt.key, targets)

        for definition in crypt.secrets:
            name = definition.name
            if not name:
                try:
                    name = self.store.get(definition.key).name
                except StoreError as err:
                    console.warning(
                        f"Could not resolve secret name for key {console.highlight(definition.key)}: {escape(str(err))}"
                    )
                    continue
            if not name:
                continue

            for namespace in targets:
                existing = self.secrets.get(f"{namespace}/{name}")
                if existing is not None and not is_controlled_by(existing, crypt.name, crypt.uid):
                    ic(namespace, name)
                    continue
                self._delete_secret(name, namespace)

    def _delete_secret(self, name: str, namespace: str) -> None:
        try:
            self.core_api.delete_namespaced_secret(
                name=name,
                namespace=namespace,
                grace_period_seconds=DELETE_GRACE_PERIOD_SECONDS,
            )
        except ApiException as err:
            if err.status == 404:
                return
            console.warning(
                f"Could not delete secret {console.highlight(f'{namespace}/{name}')}: "
                f"{escape(str(err.reason))} (status {err.status})"
            )
            return
        except HTTPError as err:
            console.warning(
                f"Could not reach the API server to delete secret {console.highlight(f'{namespace}/{name}')}: "
                f"{escape(str(err))}"
            )
            return
        console.step(f"Deleted secret {console.highlight(f'{namespace}/{name}')}")
