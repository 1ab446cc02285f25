"""Kubernetes cluster connection utilities.

This module provides the Cluster class that resolves how to reach the
API server and builds the API clients and resource mirrors the
controller runs on.
"""

import os

import click
import questionary
from icecream import ic
from kubernetes import client, config
from kubernetes.client import ApiException
from kubernetes.config.config_exception import ConfigException
from urllib3.exceptions import MaxRetryError

from crypt_controller import console
from crypt_controller.core.mirror import ResourceMirror
from crypt_controller.exceptions import ClusterConnectionError
from crypt_controller.models import CRYPT_GROUP, CRYPT_PLURAL, CRYPT_VERSION
from crypt_controller.styles import POINTER, PROMPT_STYLE, QMARK

IN_CLUSTER_CONTEXT = "in-cluster"


class Cluster:
    """Manages the connection to a Kubernetes cluster.

    Attributes:
        context: The kube context in use, or ``in-cluster``.
        configuration: Client configuration shared by all API clients.
        core_api: Client for namespaces, secrets and events.
        custom_api: Client for Crypt objects.

    """

    def __init__(
        self,
        *,
        kubeconfig: str | None = None,
        context: str | None = None,
        master: str | None = None,
        select_context: bool = False,
    ) -> None:
        """Load cluster configuration and build API clients.

        Args:
            kubeconfig: Path to a kubeconfig. When neither this nor a context
                is given and the process runs in a pod, the service account
                is used.
            context: Kube context to use instead of the current one.
            master: API server address overriding the configured one.
            select_context: If True, prompt the user to select a context.
                Must be passed as a keyword argument.

        Raises:
            ClusterConnectionError: If no usable configuration is found.

        """
        self.configuration = client.Configuration()
        self.context: str = self._load_config(kubeconfig=kubeconfig, context=context, select_context=select_context)
        if master:
            self.configuration.host = master
        ic(self.configuration.host)

        api_client = client.ApiClient(self.configuration)
        self.core_api = client.CoreV1Api(api_client)
        self.custom_api = client.CustomObjectsApi(api_client)

    def _load_config(self, *, kubeconfig: str | None, context: str | None, select_context: bool) -> str:
        """Load in-cluster or kubeconfig credentials into ``self.configuration``.

        Returns:
            The selected context name.

        Raises:
            ClusterConnectionError: If the configuration is invalid or missing.
            click.Abort: If the user cancels context selection.

        """
        if not kubeconfig and not context and not select_context and os.environ.get("KUBERNETES_SERVICE_HOST"):
            try:
                config.load_incluster_config(client_configuration=self.configuration)
            except ConfigException as e:
                raise ClusterConnectionError(f"Invalid in-cluster configuration: {e}") from e
            console.action(f"Working with {console.highlight(IN_CLUSTER_CONTEXT)} configuration")
            return IN_CLUSTER_CONTEXT

        try:
            contexts, current_context = config.list_kube_config_contexts(config_file=kubeconfig)
        except ConfigException as e:
            raise ClusterConnectionError(f"Invalid or missing kubeconfig: {e}") from e

        if select_context:
            context_names: list[str] = [ctx["name"] for ctx in contexts]
            context = questionary.select(
                "Select context to work with",
                choices=context_names,
                style=PROMPT_STYLE,
                pointer=POINTER,
                qmark=QMARK,
            ).ask()
            if context is None:
                console.warning("Context selection cancelled.")
                raise click.Abort()
        elif not context:
            context = str(current_context["name"])

        try:
            config.load_kube_config(config_file=kubeconfig, context=context, client_configuration=self.configuration)
        except ConfigException as e:
            raise ClusterConnectionError(f"Invalid or missing kubeconfig: {e}") from e

        console.action(f"Working with {console.highlight(context)} cluster")
        return context

    def ensure_crypt_api(self) -> None:
        """Check that the API server is reachable and serves Crypts.

        Raises:
            ClusterConnectionError: If the cluster is unreachable or the Crypt
                custom resource definition is not installed.

        """
        try:
            self.custom_api.list_cluster_custom_object(CRYPT_GROUP, CRYPT_VERSION, CRYPT_PLURAL, limit=1)
        except MaxRetryError as e:
            raise ClusterConnectionError(f"Failed to connect to the Kubernetes cluster: {e.reason}") from e
        except ApiException as e:
            if e.status == 404:
                raise ClusterConnectionError(
                    f"The {CRYPT_PLURAL}.{CRYPT_GROUP} custom resource definition is not installed"
                ) from e
            raise ClusterConnectionError(f"Failed to list Crypts: {e.reason} (status {e.status})") from e

    def namespace_mirror(self) -> ResourceMirror:
        return ResourceMirror("namespaces", self.core_api.list_namespace)

    def secret_mirror(self) -> ResourceMirror:
        return ResourceMirror("secrets", self.core_api.list_secret_for_all_namespaces)

    def crypt_mirror(self) -> ResourceMirror:
        return ResourceMirror(
            "crypts",
            self.custom_api.list_cluster_custom_object,
            group=CRYPT_GROUP,
            version=CRYPT_VERSION,
            plural=CRYPT_PLURAL,
        )

    def __repr__(self) -> str:
        """Return a detailed string representation for debugging."""
        return f"Cluster(context={self.context!r}, host={self.configuration.host!r})"
