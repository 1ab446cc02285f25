"""Shared test fixtures for crypt-controller tests."""

import base64
from unittest.mock import MagicMock, patch

import pytest

from crypt_controller.core.controller import Controller
from crypt_controller.core.mirror import ResourceMirror
from crypt_controller.core.workqueue import ItemExponentialFailureRateLimiter, RateLimitingQueue
from crypt_controller.models import StorePayload
from crypt_controller.store.memory import MemoryStore


def new_namespace(name):
    """Build a namespace in its API form."""
    return {"apiVersion": "v1", "kind": "Namespace", "metadata": {"name": name}}


def new_crypt(name="test-crypt", namespace="default", secrets=None, namespaces=None, uid="crypt-uid"):
    """Build a Crypt in its API form."""
    return {
        "apiVersion": "crypt.bluehoodie.io/v1alpha1",
        "kind": "Crypt",
        "metadata": {"name": name, "namespace": namespace, "uid": uid},
        "spec": {"secrets": secrets or [], "namespaces": namespaces or []},
    }


def new_owned_secret(name, namespace, owner_name="test-crypt", owner_kind="Crypt", owner_uid="crypt-uid"):
    """Build a secret controlled by the given owner in its API form."""
    return {
        "apiVersion": "v1",
        "kind": "Secret",
        "metadata": {
            "name": name,
            "namespace": namespace,
            "ownerReferences": [
                {
                    "apiVersion": "crypt.bluehoodie.io/v1alpha1",
                    "kind": owner_kind,
                    "name": owner_name,
                    "uid": owner_uid,
                    "controller": True,
                }
            ],
        },
        "type": "Opaque",
        "data": {},
    }


def decode_data(secret):
    """Decode the base64 data of a V1Secret."""
    return {k: base64.b64decode(v) for k, v in (secret.data or {}).items()}


def make_mirror(name, objects=()):
    """Create a synced mirror holding the given objects, without a watch."""
    mirror = ResourceMirror(name, MagicMock())
    mirror.replace(list(objects))
    return mirror


@pytest.fixture
def test_crypt():
    """The Crypt from the two-secret, two-namespace scenario."""
    return new_crypt(
        secrets=[
            {"name": "test-foo-secret", "key": "test/foo"},
            {"name": "test-bar-secret", "key": "test/bar"},
        ],
        namespaces=["test-ns1", "test-ns2"],
    )


@pytest.fixture
def memory_store():
    """Store holding the scenario's two payloads."""
    return MemoryStore(
        {
            "test/foo": StorePayload(name="foo", data={"foo": b"fooSecret"}),
            "test/bar": StorePayload(name="bar", data={"bar": b"barSecret"}),
        }
    )


@pytest.fixture
def core_api():
    """Mock CoreV1Api."""
    return MagicMock()


@pytest.fixture
def recorder():
    """Mock event recorder."""
    return MagicMock()


@pytest.fixture
def queue():
    """Rate limiting queue with per-item backoff only."""
    q = RateLimitingQueue(ItemExponentialFailureRateLimiter(base_delay=0.001, max_delay=0.01), name="test")
    yield q
    q.shut_down()


@pytest.fixture
def mirrors(test_crypt):
    """Synced namespace, secret and Crypt mirrors for the scenario."""
    return {
        "namespaces": make_mirror("namespaces", [new_namespace("test-ns1"), new_namespace("test-ns2")]),
        "secrets": make_mirror("secrets"),
        "crypts": make_mirror("crypts", [test_crypt]),
    }


@pytest.fixture
def controller(core_api, mirrors, memory_store, recorder, queue):
    """Controller wired to mocks, with synced mirrors."""
    return Controller(
        core_api,
        mirrors["namespaces"],
        mirrors["secrets"],
        mirrors["crypts"],
        store=memory_store,
        recorder=recorder,
        queue=queue,
    )


@pytest.fixture
def mock_kube_contexts():
    """Mock kubernetes config contexts."""
    with patch("kubernetes.config.list_kube_config_contexts") as mock:
        mock.return_value = ([{"name": "test-context"}, {"name": "other-context"}], {"name": "test-context"})
        yield mock


@pytest.fixture
def mock_kube_config():
    """Mock kubernetes config loading."""
    with patch("kubernetes.config.load_kube_config") as mock:
        yield mock


@pytest.fixture
def no_in_cluster_env(monkeypatch):
    """Make sure the in-cluster service environment is absent."""
    monkeypatch.delenv("KUBERNETES_SERVICE_HOST", raising=False)
