"""Data models for crypt-controller.

This module provides type-safe data structures for Crypt resources and
store payloads, replacing the loosely-typed dictionaries delivered by the
Kubernetes API with proper Python data classes.
"""

import base64
import binascii
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from crypt_controller.exceptions import CryptParsingError, InvalidDataError

CRYPT_GROUP = "crypt.bluehoodie.io"
CRYPT_VERSION = "v1alpha1"
CRYPT_KIND = "Crypt"
CRYPT_PLURAL = "crypts"
CRYPT_API_VERSION = f"{CRYPT_GROUP}/{CRYPT_VERSION}"

SECRET_TYPE_OPAQUE = "Opaque"


class EventType(str, Enum):
    """Kubernetes event types.

    Inherits from str so values can be placed directly in API bodies.
    """

    NORMAL = "Normal"
    WARNING = "Warning"


@dataclass(frozen=True, slots=True)
class SecretDefinition:
    """One secret a Crypt wants materialized in every matched namespace.

    Attributes:
        key: The lookup key in the secret store.
        name: Target secret name; falls back to the payload's declared name.
        type: Target secret type override.
        labels: Labels copied onto every target secret.
        annotations: Annotations copied onto every target secret.

    """

    key: str
    name: str = ""
    type: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw: Any) -> "SecretDefinition":
        """Build a definition from one entry of ``spec.secrets``.

        Raises:
            CryptParsingError: If the entry is not a mapping or has no key.

        """
        if not isinstance(raw, dict):
            raise CryptParsingError(f"Secret definition must be a mapping, got {type(raw).__name__}")
        key = raw.get("key")
        if not key or not isinstance(key, str):
            raise CryptParsingError("Secret definition is missing a 'key'")
        return cls(
            key=key,
            name=raw.get("name") or "",
            type=raw.get("type") or "",
            labels=dict(raw.get("labels") or {}),
            annotations=dict(raw.get("annotations") or {}),
        )


@dataclass(frozen=True, slots=True)
class Crypt:
    """A parsed Crypt custom resource.

    Attributes:
        name: The Crypt name.
        namespace: The namespace the Crypt lives in.
        uid: The object's UID, used in owner references.
        secrets: Secret definitions to materialize.
        namespaces: Namespace selection patterns (regular expressions).

    """

    name: str
    namespace: str
    uid: str = ""
    secrets: tuple[SecretDefinition, ...] = ()
    namespaces: tuple[str, ...] = ()

    @property
    def key(self) -> str:
        """The work queue key for this Crypt."""
        return f"{self.namespace}/{self.name}" if self.namespace else self.name

    @classmethod
    def from_dict(cls, obj: dict[str, Any]) -> "Crypt":
        """Parse a Crypt from its API representation.

        Both the structured ``spec.secrets`` list and the flat ``spec.keys``
        list are accepted. A flat key is used as both the lookup key and
        the target secret name.

        Args:
            obj: The Crypt as returned by the Kubernetes API.

        Returns:
            The parsed Crypt.

        Raises:
            CryptParsingError: If the object does not match either schema.

        """
        metadata = obj.get("metadata") or {}
        name = metadata.get("name")
        if not name:
            raise CryptParsingError("Crypt is missing metadata.name")

        spec = obj.get("spec") or {}
        if not isinstance(spec, dict):
            raise CryptParsingError(f"Crypt '{name}' has a non-mapping spec")

        if "secrets" in spec:
            raw_secrets = spec.get("secrets") or []
            if not isinstance(raw_secrets, list):
                raise CryptParsingError(f"Crypt '{name}' spec.secrets must be a list")
            secrets = tuple(SecretDefinition.from_dict(raw) for raw in raw_secrets)
        else:
            raw_keys = spec.get("keys") or []
            if not isinstance(raw_keys, list) or not all(isinstance(k, str) and k for k in raw_keys):
                raise CryptParsingError(f"Crypt '{name}' spec.keys must be a list of strings")
            secrets = tuple(SecretDefinition(key=k, name=k) for k in raw_keys)

        patterns = spec.get("namespaces") or []
        if not isinstance(patterns, list) or not all(isinstance(p, str) for p in patterns):
            raise CryptParsingError(f"Crypt '{name}' spec.namespaces must be a list of strings")

        return cls(
            name=name,
            namespace=metadata.get("namespace") or "",
            uid=metadata.get("uid") or "",
            secrets=secrets,
            namespaces=tuple(patterns),
        )


@dataclass(frozen=True, slots=True)
class StorePayload:
    """A secret payload returned by a store backend.

    Attributes:
        name: The declared secret name (may be empty).
        secret_type: The type declared by the store. Informational only, the
            target type comes from the secret definition.
        data: Mapping of field name to raw bytes.

    """

    name: str = ""
    secret_type: str = SECRET_TYPE_OPAQUE
    data: dict[str, bytes] = field(default_factory=dict)

    @classmethod
    def from_document(cls, document: Any, *, default_name: str = "") -> "StorePayload":
        """Decode a stored JSON document into a payload.

        The structured form is ``{"name", "secret_type", "data": {field: base64}}``.
        A bare mapping of ``field -> base64`` is accepted as the data itself.

        Raises:
            InvalidDataError: If the document has neither shape or a value
                is not valid base64.

        """
        if not isinstance(document, dict):
            raise InvalidDataError("value could not be decoded into a store object")

        if "data" in document:
            encoded = document.get("data") or {}
            name = document.get("name") or default_name
            secret_type = document.get("secret_type") or SECRET_TYPE_OPAQUE
        else:
            encoded = document
            name = default_name
            secret_type = SECRET_TYPE_OPAQUE

        if not isinstance(encoded, dict) or not isinstance(name, str) or not isinstance(secret_type, str):
            raise InvalidDataError("value could not be decoded into a store object")

        data: dict[str, bytes] = {}
        for data_field, value in encoded.items():
            if not isinstance(value, str):
                raise InvalidDataError(f"field '{data_field}' is not a base64 string")
            try:
                data[data_field] = base64.b64decode(value, validate=True)
            except binascii.Error as err:
                raise InvalidDataError(f"field '{data_field}' is not valid base64") from err
        return cls(name=name, secret_type=secret_type, data=data)
