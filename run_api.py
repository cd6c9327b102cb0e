#!/usr/bin/env python3
"""
Startup script for the Safe Transit Routing API server.

This script starts the FastAPI server with proper configuration.
"""

import argparse
import logging
import os

import uvicorn

logger = logging.getLogger(__name__)


def main():
    """Start the FastAPI server."""
    parser = argparse.ArgumentParser(description="Safe Transit Routing API Server")
    parser.add_argument("--host", default="0.0.0.0", help="Host to bind to")
    parser.add_argument("--port", type=int, default=8000, help="Port to bind to")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload for development")
    parser.add_argument("--log-level", default="info", choices=["debug", "info", "warning", "error"],
                        help="Log level")
    parser.add_argument("--topology", help="Path to a topology JSON file (defaults to the bundled sample)")
    parser.add_argument("--crime-data", help="Path to a crime incident GeoJSON file to preload")

    args = parser.parse_args()

    # Read by ProviderSettings.from_env() when the app module is imported
    if args.topology:
        os.environ["SAFE_TRANSIT_TOPOLOGY_PATH"] = os.path.abspath(args.topology)
    if args.crime_data:
        os.environ["SAFE_TRANSIT_CRIME_DATA_PATH"] = os.path.abspath(args.crime_data)

    logging.basicConfig(level=args.log_level.upper(),
                        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    logger.info(f"Starting Safe Transit Routing API Server on http://{args.host}:{args.port}")
    logger.info(f"Documentation: http://{args.host}:{args.port}/docs")

    # Ensure we're in the right directory
    os.chdir(os.path.dirname(os.path.abspath(__file__)))

    # Start the server
    uvicorn.run(
        "api.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=args.log_level,
        access_log=True
    )


if __name__ == "__main__":
    main()
