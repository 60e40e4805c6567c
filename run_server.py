"""Gateway / job service entry point.

Usage:
    # Gateway in front of the execution service:
    python run_server.py

    # Job service (the upstream side serving /api/v1/jobs):
    python run_server.py --service --port 5078

    # Custom host/port:
    python run_server.py --host 0.0.0.0 --port 9000
"""
from __future__ import annotations

import argparse
import logging

logger = logging.getLogger(__name__)


def main() -> None:
    parser = argparse.ArgumentParser(description="Hostgate server")
    parser.add_argument("--host", default="0.0.0.0", help="Bind address (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=8000, help="Port (default: 8000)")
    parser.add_argument("--service", action="store_true", help="Run the job service instead of the gateway")
    parser.add_argument("--log-level", default="info", choices=["debug", "info", "warning", "error"])
    args = parser.parse_args()

    import uvicorn

    from hostgate.api.config import ApiSettings
    from hostgate.utils.logging import configure_logging

    settings = ApiSettings(host=args.host, port=args.port, log_level=args.log_level)
    configure_logging(settings.log_level, settings.log_format)
    if args.service:
        from hostgate.api.service import create_service_app

        app = create_service_app(settings)
        name = "job service"
    else:
        from hostgate.api.main import create_app

        app = create_app(settings)
        name = "gateway"

    logger.info("Starting hostgate %s on %s:%s", name, args.host, args.port)
    uvicorn.run(app, host=args.host, port=args.port)


if __name__ == "__main__":
    main()
