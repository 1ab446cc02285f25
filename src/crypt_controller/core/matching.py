"""Namespace selection by pattern.

Crypt namespace patterns are regular expressions searched anywhere in the
namespace name, so ``ns`` selects ``ns1``, ``my-ns-2`` and ``insert``
alike. Anchor the pattern (``^ns$``) to select a single namespace.
"""

import re
from collections.abc import Iterable

from icecream import ic


def pattern_matches(pattern: str, namespace: str) -> bool:
    """Check whether a namespace pattern selects a namespace.

    Args:
        pattern: Regular expression, searched unanchored.
        namespace: Namespace name.

    Returns:
        True if the pattern matches anywhere in the name. A malformed
        pattern matches nothing.

    """
    try:
        return re.search(pattern, namespace) is not None
    except re.error as err:
        ic(pattern, err)
        return False


def match_namespaces(patterns: Iterable[str], namespaces: Iterable[str]) -> list[str]:
    """Return every namespace selected by at least one pattern.

    Args:
        patterns: Namespace patterns of a Crypt.
        namespaces: Currently known namespace names.

    Returns:
        Matched namespaces without duplicates, in the order they were given.

    """
    patterns = list(patterns)
    return [ns for ns in dict.fromkeys(namespaces) if any(pattern_matches(p, ns) for p in patterns)]
