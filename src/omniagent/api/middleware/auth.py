"""Caller identity — resolves the explicit user context for each request.

Authentication itself happens upstream (API gateway / session layer); this
service only needs to know *which* user or tenant a call acts for, and that
identity is passed explicitly into every service call.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from omniagent.errors.definitions import ErrUnauthorized

AUTH_HEADER_USER = "x-user-id"

_USER_ID_RE = re.compile(r"^[A-Za-z0-9_.:@-]{1,64}$")


@dataclass(frozen=True)
class UserContext:
    """Identity of the user a request acts for."""

    user_id: str


def resolve_user(user_header: str) -> UserContext:
    """Build a ``UserContext`` from the ``x-user-id`` header.

    Raises:
        OmniAgentError: 401 if the header is missing or malformed.
    """
    user_id = user_header.strip()
    if not user_id or not _USER_ID_RE.match(user_id):
        raise ErrUnauthorized
    return UserContext(user_id=user_id)
