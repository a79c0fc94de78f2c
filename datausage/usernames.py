"""
Username helpers.

The ICAT stores bare usernames ("alice") while the DE database keys users by
their fully qualified name ("alice@iplantcollaborative.org").
"""

from __future__ import annotations


def _domain(suffix: str) -> str:
    return suffix.strip("@")


def fix_username(username: str, suffix: str) -> str:
    """Return the fully qualified form of ``username``.

    Anything from the first ``@`` onward is replaced by the configured
    domain, so qualified names pass through unchanged.
    """
    bare = username.split("@", 1)[0]
    return f"{bare}@{_domain(suffix)}"


def strip_username(username: str, suffix: str) -> str:
    """Remove the configured domain from ``username`` if present."""
    tail = "@" + _domain(suffix)
    if username.endswith(tail):
        return username[: -len(tail)]
    return username
