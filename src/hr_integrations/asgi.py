"""
ASGI application entrypoint.

    uvicorn hr_integrations.asgi:app --host 0.0.0.0 --port 3001

The integration context (storage, cache, cipher) is built at startup from the
environment, so ENCRYPTION_KEY must be set before the server starts.
"""
from .api.main import create_app

app = create_app()
