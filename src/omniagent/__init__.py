"""OmniAgent integrations core — OAuth credential lifecycle and webhook delivery."""

__version__ = "0.1.0"
