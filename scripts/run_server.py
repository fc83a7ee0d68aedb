#!/usr/bin/env python3
"""
Startup script for the diagnostics backend
"""

import argparse
import sys

import uvicorn

from diagnostics_integrations.api import create_app
from diagnostics_integrations.config import configure_logging, load_settings


def main():
    """Main entry point"""
    parser = argparse.ArgumentParser(description="Start the diagnostics backend")
    parser.add_argument("--host", default="0.0.0.0", help="Host to bind to")
    parser.add_argument("--port", type=int, default=8080, help="Port to bind to")
    parser.add_argument("--log-level", default=None, help="Log level (defaults to LOG_LEVEL)")
    parser.add_argument("--check-only", action="store_true", help="Only check configuration and exit")

    args = parser.parse_args()

    overrides = {"LOG_LEVEL": args.log_level} if args.log_level else {}
    settings = load_settings(**overrides)
    configure_logging(settings.LOG_LEVEL)

    try:
        settings.check_required()
    except ValueError as e:
        print(f"❌ Configuration error: {e}")
        sys.exit(1)

    if args.check_only:
        print("✅ Configuration looks good")
        return

    print(f"🚀 Starting diagnostics backend on {args.host}:{args.port}")
    print(f"📊 Health check: http://{args.host}:{args.port}/health")
    uvicorn.run(create_app(settings), host=args.host, port=args.port,
                log_level=settings.LOG_LEVEL.lower())


if __name__ == "__main__":
    main()
