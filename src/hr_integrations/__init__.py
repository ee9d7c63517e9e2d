"""HR integrations: provider framework, OAuth lifecycle, rate limiting and retries."""

__version__ = "0.1.0"
