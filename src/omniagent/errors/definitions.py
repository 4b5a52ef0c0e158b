"""Pre-built error instances shared by the HTTP layer."""

from __future__ import annotations

from omniagent.errors.base import OmniAgentError

# -- Authentication --------------------------------------------------------

ErrUnauthorized = OmniAgentError("unauthorized", status_code=401, code="unauthorized")

# -- Lifecycle -------------------------------------------------------------

ErrEngineNotReady = OmniAgentError(
    "integrations engine is not initialized", status_code=503, code="engine-not-ready"
)
ErrWebhooksDisabled = OmniAgentError(
    "webhook delivery is disabled", status_code=503, code="webhooks-disabled"
)

# -- Validation ------------------------------------------------------------

ErrInvalidOAuthState = OmniAgentError(
    "OAuth callback state does not name a supported provider",
    status_code=400,
    code="invalid-oauth-state",
)
