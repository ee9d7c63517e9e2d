"""
Module runner for the integrations API.

Usage:
    python -m hr_integrations.run
"""
import os

import uvicorn

from .core.settings import get_settings


# PUBLIC_INTERFACE
def main():
    """Start the API with HOST / PORT / RELOAD from the environment."""
    settings = get_settings()
    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "3001"))
    reload = os.getenv("RELOAD", "false").lower() in ("1", "true", "yes")

    print(f"[server] Starting HR Integrations on {host}:{port} (reload={reload}, env={settings.tenant.ENV})")
    uvicorn.run(
        "hr_integrations.asgi:app",
        host=host,
        port=port,
        reload=reload,
        log_level=settings.logging.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
