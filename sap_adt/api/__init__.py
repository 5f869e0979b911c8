"""
sap_adt.api - Optional REST API Gateway
=======================================

FastAPI gateway that forwards requests to one SAP system's ADT interface
through a single managed connection.

Usage
-----
>>> from sap_adt.api import create_app
>>> app = create_app()
>>> # Run with: uvicorn sap_adt.api:app

Or run directly:
>>> python -m sap_adt.api

"""

from pathlib import Path

# Load .env before importing gateway
try:
    from dotenv import load_dotenv
    env_path = Path.cwd() / ".env"
    if env_path.exists():
        load_dotenv(env_path)
except ImportError:
    pass

from sap_adt.api.gateway import AdtGateway, create_app, get_gateway

# Default app instance for uvicorn
app = create_app()

__all__ = [
    "AdtGateway",
    "create_app",
    "get_gateway",
    "app",
]
