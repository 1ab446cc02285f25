"""Target secret subpackage.

This package contains target secret construction and the ownership
lookups used for self-healing and cleanup.
"""

from crypt_controller.secrets.materialize import new_secret, owner_reference, upsert_secret
from crypt_controller.secrets.ownership import controller_ref, is_controlled_by, resolve_owner

__all__ = [
    # materialize
    "new_secret",
    "owner_reference",
    "upsert_secret",
    # ownership
    "controller_ref",
    "is_controlled_by",
    "resolve_owner",
]
