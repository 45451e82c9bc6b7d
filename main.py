#!/usr/bin/env python3
"""Main entry point for the Abacus round engine."""

import logging
import os
import sys

from abacus.config import get_default_config
from abacus.web import create_app


def setup_logging(level: str = "INFO"):
    """Configure logging for the web server."""
    logging.basicConfig(
        level=getattr(logging, level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%H:%M:%S",
    )

    # Suppress noisy third-party loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def print_usage():
    """Print usage information for local development."""
    print("Abacus round engine")
    print("=" * 40)
    print("Web server (API + WebSocket):")
    print("   python main.py --web")
    print()
    print("Configuration is read from abacus_config.json; ABACUS_DATABASE_URL,")
    print("ABACUS_SECRET_KEY and ABACUS_LOG_LEVEL override it.")
    print()


def start_web_server():
    """Start the FastAPI web server."""
    config = get_default_config()
    setup_logging(config.system.log_level)

    import uvicorn

    port = int(os.environ.get("PORT", 8000))

    print("Starting Abacus round engine...")
    print(f"API Documentation: http://localhost:{port}/docs")
    print(f"WebSocket: ws://localhost:{port}/ws/tournaments/{{id}}")

    uvicorn.run(create_app(config), host="0.0.0.0", port=port, log_level="info", access_log=True)


def main():
    """Main entry point."""
    is_production = any(
        [
            "PORT" in os.environ,
            os.environ.get("ENVIRONMENT") == "production",
        ]
    )

    if is_production or "--web" in sys.argv:
        start_web_server()
    else:
        print_usage()


if __name__ == "__main__":
    main()
