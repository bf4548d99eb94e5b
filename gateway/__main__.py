"""
Entry point for running the voice gateway.

Usage:
    python -m gateway

Binds to SERVER_HOST:SERVER_PORT (default http://0.0.0.0:3000).
"""
import uvicorn

from logging_setup import setup_logging
from .config import get_config

if __name__ == "__main__":
    config = get_config()
    setup_logging(level=config.log_level, use_json=True)

    uvicorn.run(
        "gateway.server:app",
        host=config.host,
        port=config.port,
        log_level=config.log_level.lower(),
    )
