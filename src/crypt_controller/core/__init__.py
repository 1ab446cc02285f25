"""Core controller subpackage.

This package contains the work queue, the resource mirrors, namespace
matching and the controller that ties them together.
"""

from crypt_controller.core.controller import Controller
from crypt_controller.core.events import EventRecorder
from crypt_controller.core.matching import match_namespaces, pattern_matches
from crypt_controller.core.mirror import ResourceMirror, meta_namespace_key, split_meta_namespace_key
from crypt_controller.core.workqueue import RateLimitingQueue, WorkQueue

__all__ = [
    "Controller",
    "EventRecorder",
    "ResourceMirror",
    "RateLimitingQueue",
    "WorkQueue",
    "match_namespaces",
    "pattern_matches",
    "meta_namespace_key",
    "split_meta_namespace_key",
]
