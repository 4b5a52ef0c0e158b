"""Credentials — OAuth2 connections to third-party identity providers.

Provides:
- ``CredentialManager`` — code exchange, storage and refresh-before-use
- ``ProviderRegistry`` / ``ProviderDescriptor`` — per-provider endpoints and scopes
"""

from __future__ import annotations

from omniagent.credentials.providers import (
    Provider,
    ProviderDescriptor,
    ProviderRegistry,
    default_registry,
)
from omniagent.credentials.service import CredentialManager
from omniagent.credentials.types import ConnectionState, ConnectionStatus, TokenResponse

__all__ = [
    "ConnectionState",
    "ConnectionStatus",
    "CredentialManager",
    "Provider",
    "ProviderDescriptor",
    "ProviderRegistry",
    "TokenResponse",
    "default_registry",
]
