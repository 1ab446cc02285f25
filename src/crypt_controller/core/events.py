"""Best-effort Kubernetes event emission."""

import time
from datetime import datetime, timezone
from typing import Any

from kubernetes import client
from kubernetes.client import ApiException
from rich.markup import escape

from crypt_controller import console
from crypt_controller.models import EventType

COMPONENT = "crypt-controller"


class EventRecorder:
    """Records events against Crypt objects.

    Failures to write an event are logged and otherwise ignored.

    Attributes:
        core_api: Client used to create events.
        component: Reporting component name.

    """

    def __init__(self, core_api: client.CoreV1Api, component: str = COMPONENT) -> None:
        self.core_api = core_api
        self.component = component

    def event(self, obj: dict[str, Any], event_type: EventType, reason: str, message: str) -> None:
        """Create an event about ``obj``.

        Args:
            obj: The involved object in its API form.
            event_type: Normal or Warning.
            reason: Short CamelCase reason.
            message: Human readable message.

        """
        metadata = obj.get("metadata") or {}
        namespace = metadata.get("namespace") or "default"
        now = datetime.now(timezone.utc)
        body = {
            "metadata": {
                "name": f"{metadata.get('name')}.{time.time_ns():x}",
                "namespace": namespace,
            },
            "involvedObject": {
                "apiVersion": obj.get("apiVersion"),
                "kind": obj.get("kind"),
                "name": metadata.get("name"),
                "namespace": metadata.get("namespace"),
                "uid": metadata.get("uid"),
                "resourceVersion": metadata.get("resourceVersion"),
            },
            "type": event_type.value,
            "reason": reason,
            "message": message,
            "source": {"component": self.component},
            "firstTimestamp": now.isoformat(),
            "lastTimestamp": now.isoformat(),
            "count": 1,
        }
        try:
            self.core_api.create_namespaced_event(namespace=namespace, body=body)
        except ApiException as err:
            console.warning(f"Could not record event {reason} for {metadata.get('name')}: {escape(str(err.reason))}")
