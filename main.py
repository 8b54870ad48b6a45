# -*- coding: utf-8 -*-

# DO Proxy
# Copyright (C) 2025 DO Proxy contributors
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""
DO Proxy - OpenAI-compatible proxy for Digital Ocean inference.

Application entry point. Creates the FastAPI app, wires the shared upstream
client and model cache, and starts uvicorn.

Usage:
    # Using default settings (host: 0.0.0.0, port: 4005)
    python main.py

    # With CLI arguments (highest priority)
    python main.py --port 9000
    python main.py --host 127.0.0.1 --port 9000

    # With environment variables (medium priority)
    SERVER_PORT=9000 python main.py

    # Using uvicorn directly (uvicorn handles its own args)
    uvicorn main:app --host 0.0.0.0 --port 4005

Priority: CLI args > Environment variables > Default values
"""

import argparse
import sys
from contextlib import asynccontextmanager
from typing import List, Tuple

import uvicorn
from fastapi import FastAPI, Request, Response
from loguru import logger

from doproxy.cache import ModelListCache
from doproxy.config import (
    APP_DESCRIPTION,
    APP_TITLE,
    APP_VERSION,
    DEFAULT_SERVER_HOST,
    DEFAULT_SERVER_PORT,
    DO_API_KEY,
    DO_INFERENCE_URL,
    LOG_LEVEL,
    SERVER_HOST,
    SERVER_PORT,
)
from doproxy.http_client import UpstreamHttpClient
from doproxy.routes import router

# --- Loguru Configuration ---
logger.remove()
logger.add(
    sys.stderr,
    level=LOG_LEVEL,
    colorize=True,
    format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan> - <level>{message}</level>",
)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, PUT, DELETE, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
}


def validate_configuration() -> List[str]:
    """
    Check settings the proxy can start without but will not work well without.

    Problems are logged as warnings; startup continues.

    Returns:
        List of problem descriptions (empty when the configuration is complete)
    """
    problems: List[str] = []
    if not DO_API_KEY:
        problems.append("DO_API_KEY is not set; upstream requests will be rejected")
    if not DO_INFERENCE_URL.startswith(("http://", "https://")):
        problems.append(f"DO_INFERENCE_URL is not an http(s) URL: {DO_INFERENCE_URL!r}")
    for problem in problems:
        logger.warning(problem)
    return problems


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create the shared upstream client and model cache; close the client on shutdown."""
    if getattr(app.state, "http_client", None) is None:
        app.state.http_client = UpstreamHttpClient()
    if getattr(app.state, "model_cache", None) is None:
        app.state.model_cache = ModelListCache()

    validate_configuration()
    logger.info("Forwarding to {}", DO_INFERENCE_URL)

    yield

    await app.state.http_client.close()
    logger.info("Upstream client closed")


async def cors_middleware(request: Request, call_next):
    """Allow any origin on every response and answer OPTIONS preflight with 204."""
    if request.method == "OPTIONS":
        return Response(status_code=204, headers=CORS_HEADERS)
    response = await call_next(request)
    response.headers.update(CORS_HEADERS)
    return response


def create_app() -> FastAPI:
    """
    Build the FastAPI application.

    The upstream client and model cache are created by the lifespan unless
    already present on app.state, so tests can install their own.
    """
    app = FastAPI(
        title=APP_TITLE,
        description=APP_DESCRIPTION,
        version=APP_VERSION,
        lifespan=lifespan,
    )
    app.middleware("http")(cors_middleware)
    app.include_router(router)
    return app


app = create_app()


# ==================================================================================================
# CLI
# ==================================================================================================


def parse_cli_args() -> argparse.Namespace:
    """
    Parse command-line arguments.

    Defaults are None so that resolve_server_config() can tell an explicit
    CLI value from "use env or default".
    """
    parser = argparse.ArgumentParser(
        description=f"{APP_TITLE} - {APP_DESCRIPTION}",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py                              # Use defaults or env vars
  python main.py --port 9000                  # Custom port
  python main.py --host 127.0.0.1             # Local connections only
  python main.py -H 0.0.0.0 -p 4005           # Short forms

Priority: CLI args > Environment variables > Default values
        """,
    )
    parser.add_argument(
        "-H",
        "--host",
        type=str,
        default=None,
        metavar="HOST",
        help=f"Server host address (default: {DEFAULT_SERVER_HOST}, env: SERVER_HOST)",
    )
    parser.add_argument(
        "-p",
        "--port",
        type=int,
        default=None,
        metavar="PORT",
        help=f"Server port (default: {DEFAULT_SERVER_PORT}, env: SERVER_PORT)",
    )
    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"%(prog)s {APP_VERSION}",
    )
    return parser.parse_args()


def resolve_server_config(args: argparse.Namespace) -> Tuple[str, int]:
    """
    Resolve host and port: CLI args, then environment, then defaults.

    SERVER_HOST and SERVER_PORT already fall back to the defaults when the
    environment does not set them, so each value is resolved independently.

    Returns:
        Tuple of (host, port)
    """
    host = args.host if args.host is not None else SERVER_HOST or DEFAULT_SERVER_HOST
    port = args.port if args.port is not None else SERVER_PORT or DEFAULT_SERVER_PORT
    return host, port


def print_startup_banner(host: str, port: int) -> None:
    """Print the startup banner with the local URLs."""
    display_host = "localhost" if host == "0.0.0.0" else host
    base_url = f"http://{display_host}:{port}"
    key_hint = f"{DO_API_KEY[:8]}..." if DO_API_KEY else "NOT SET"

    print()
    print(f"  {APP_TITLE} v{APP_VERSION}")
    print("  " + "=" * 48)
    print(f"  Upstream:   {DO_INFERENCE_URL}")
    print(f"  API key:    {key_hint}")
    print(f"  Server:     {base_url}")
    print(f"  OpenAI API: {base_url}/v1")
    print(f"  API Docs:   {base_url}/docs")
    print(f"  Health:     {base_url}/health")
    print("  " + "=" * 48)
    print()


if __name__ == "__main__":
    cli_args = parse_cli_args()
    final_host, final_port = resolve_server_config(cli_args)
    print_startup_banner(final_host, final_port)

    logger.info("Starting Uvicorn server on {}:{}...", final_host, final_port)
    uvicorn.run(
        "main:app",
        host=final_host,
        port=final_port,
        log_config=None,
    )
