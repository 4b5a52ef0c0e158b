"""HTTP middleware — caller identity, CORS, request metrics."""

from omniagent.api.middleware.auth import AUTH_HEADER_USER, UserContext, resolve_user
from omniagent.api.middleware.cors import setup_cors

__all__ = ["AUTH_HEADER_USER", "UserContext", "resolve_user", "setup_cors"]
