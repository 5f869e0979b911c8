"""
sap_adt.api - Run as module

Usage: python -m sap_adt.api
"""

import os

import uvicorn


def main():
    """Run the ADT gateway server."""
    host = os.environ.get("ADT_HOST", "127.0.0.1")
    port = int(os.environ.get("ADT_PORT", "5060"))
    reload = os.environ.get("ADT_RELOAD", "false").lower() == "true"
    log_level = os.environ.get("ADT_LOG_LEVEL", "info")

    print(f"Starting SAP ADT Gateway on {host}:{port}")

    uvicorn.run(
        "sap_adt.api:app",
        host=host,
        port=port,
        reload=reload,
        log_level=log_level,
    )


if __name__ == "__main__":
    main()
