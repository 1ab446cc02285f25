"""Target secret construction and upsert.

This module builds the Kubernetes Secret a Crypt wants in a namespace
and writes it to the cluster.
"""

import base64

from kubernetes import client
from kubernetes.client import ApiException

from crypt_controller.exceptions import InvalidDataError
from crypt_controller.models import (
    CRYPT_API_VERSION,
    CRYPT_KIND,
    SECRET_TYPE_OPAQUE,
    Crypt,
    SecretDefinition,
    StorePayload,
)

_HTTP_CONFLICT = 409


def owner_reference(crypt: Crypt) -> client.V1OwnerReference:
    """Build the controller owner reference pointing at a Crypt."""
    return client.V1OwnerReference(
        api_version=CRYPT_API_VERSION,
        kind=CRYPT_KIND,
        name=crypt.name,
        uid=crypt.uid,
        controller=True,
        block_owner_deletion=True,
    )


def new_secret(
    payload: StorePayload,
    definition: SecretDefinition,
    crypt: Crypt,
    namespace: str,
) -> client.V1Secret:
    """Build the target secret for one definition in one namespace.

    Args:
        payload: The store payload for the definition's key.
        definition: The Crypt's secret definition.
        crypt: The owning Crypt.
        namespace: The matched target namespace.

    Returns:
        The secret to create or replace.

    Raises:
        InvalidDataError: If neither the definition nor the payload names the secret.

    """
    name = definition.name or payload.name
    if not name:
        raise InvalidDataError(f"no secret name for key '{definition.key}'")

    return client.V1Secret(
        api_version="v1",
        kind="Secret",
        metadata=client.V1ObjectMeta(
            name=name,
            namespace=namespace,
            owner_references=[owner_reference(crypt)],
            labels=dict(definition.labels) or None,
            annotations=dict(definition.annotations) or None,
        ),
        type=definition.type or SECRET_TYPE_OPAQUE,
        data={field: base64.b64encode(value).decode("ascii") for field, value in payload.data.items()},
    )


def upsert_secret(core_api: client.CoreV1Api, secret: client.V1Secret) -> client.V1Secret:
    """Create a secret, replacing it entirely if it already exists.

    Fields added to an existing secret outside of the controller are lost.

    Args:
        core_api: Client used to write the secret.
        secret: The secret to write.

    Returns:
        The secret as stored by the API server.

    Raises:
        ApiException: If the create fails for a reason other than a
            conflict, or the replace fails.

    """
    namespace = secret.metadata.namespace
    try:
        return core_api.create_namespaced_secret(namespace=namespace, body=secret)
    except ApiException as err:
        if err.status != _HTTP_CONFLICT:
            raise
    return core_api.replace_namespaced_secret(name=secret.metadata.name, namespace=namespace, body=secret)
