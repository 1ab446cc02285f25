"""Mapping target secrets back to the Crypt that owns them."""

from typing import Any

from crypt_controller.core.mirror import ResourceMirror
from crypt_controller.models import CRYPT_KIND


def controller_ref(obj: dict[str, Any]) -> dict[str, Any] | None:
    """Return the owner reference marked as controller, if any."""
    for ref in (obj.get("metadata") or {}).get("ownerReferences") or []:
        if ref.get("controller"):
            return ref
    return None


def is_controlled_by(obj: dict[str, Any], crypt_name: str, crypt_uid: str = "") -> bool:
    """Check whether a Crypt is the controller owner of an object.

    The UID is only compared when both sides carry one.
    """
    ref = controller_ref(obj)
    if ref is None or ref.get("kind") != CRYPT_KIND or ref.get("name") != crypt_name:
        return False
    return not (crypt_uid and ref.get("uid") and ref.get("uid") != crypt_uid)


def resolve_owner(secret: dict[str, Any], crypts: ResourceMirror) -> dict[str, Any] | None:
    """Find the live Crypt controlling a (deleted) secret.

    Every namespace that holds a Crypt is searched once for a Crypt with
    the referenced name; the first hit wins.

    Args:
        secret: Last known state of the secret.
        crypts: Mirror of all Crypts.

    Returns:
        The owning Crypt, or None if the secret is not controlled by a Crypt
        or its owner no longer exists.

    """
    ref = controller_ref(secret)
    if ref is None or ref.get("kind") != CRYPT_KIND or not ref.get("name"):
        return None
    owner_name = ref["name"]

    checked: set[str] = set()
    for crypt in crypts.list_objects():
        namespace = (crypt.get("metadata") or {}).get("namespace") or ""
        if namespace in checked:
            continue
        checked.add(namespace)

        owner = crypts.get(f"{namespace}/{owner_name}" if namespace else owner_name)
        if owner is not None:
            return owner
    return None
