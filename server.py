#!/usr/bin/env python3
"""
HUD App - FastAPI backend serving host inventory as JSON
"""

import asyncio
import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from system_indexer import SystemIndexer, get_cpu_features, get_gpu_infos
from toolchain_indexer import (
    PathUnavailableError,
    detect_dotnet,
    detect_python,
    get_login_shell_path,
    get_path_info,
    get_profile_info,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

DEFAULT_HOST = os.environ.get("HUDAPP_HOST", "127.0.0.1")


def _env_port(default: int = 8765) -> int:
    """Read HUDAPP_PORT, ignoring junk values."""
    raw = os.environ.get("HUDAPP_PORT", "")
    try:
        port = int(raw)
    except ValueError:
        return default
    return port if 0 < port < 65536 else default


DEFAULT_PORT = _env_port()

# Module-level indexer singleton; set during startup
indexer: SystemIndexer = None


def _get_indexer() -> SystemIndexer:
    global indexer
    if indexer is None:
        indexer = SystemIndexer(quiet=True)
    return indexer


async def _warm_cache():
    """Collect the machine inventory once so the first page load is fast."""
    try:
        await asyncio.to_thread(_get_indexer().load_or_collect)
        logger.info("Machine inventory ready")
    except Exception as e:
        logger.error(f"Initial inventory collection failed: {e}", exc_info=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    asyncio.create_task(_warm_cache())
    yield


app = FastAPI(title="HUD App Server", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/api/gpu")
async def gpu():
    try:
        return await asyncio.to_thread(get_gpu_infos)
    except Exception as e:
        logger.error(f"Error getting GPU information: {e}", exc_info=True)
        return JSONResponse([], status_code=500)


@app.get("/api/machine")
async def machine(refresh: bool = False):
    try:
        return await asyncio.to_thread(_get_indexer().load_or_collect, refresh)
    except Exception as e:
        logger.error(f"Error getting machine information: {e}", exc_info=True)
        return JSONResponse({"error": "Failed to fetch machine information"}, status_code=500)


@app.get("/api/cpu")
async def cpu():
    try:
        return await asyncio.to_thread(get_cpu_features)
    except Exception as e:
        logger.error(f"Error detecting CPU features: {e}", exc_info=True)
        return JSONResponse({"error": "Failed to detect CPU features"}, status_code=500)


@app.get("/api/profile")
async def profile():
    try:
        return await asyncio.to_thread(get_profile_info)
    except Exception as e:
        logger.error(f"Error getting profile information: {e}", exc_info=True)
        return {
            "platform": "Unknown",
            "platform_type": "unknown",
            "distro_info": None,
            "distro_family": None,
            "profile_files": None,
        }


@app.get("/api/machine/hostname")
async def hostname():
    return {"hostname": SystemIndexer.get_hostname()}


@app.get("/api/path")
async def path(method: str = "process_env"):
    try:
        if method == "login_shell":
            login_path = await asyncio.to_thread(get_login_shell_path)
            if login_path:
                return await asyncio.to_thread(get_path_info, login_path, "login_shell")
            logger.info("Login shell PATH unavailable, using process environment")
        return await asyncio.to_thread(get_path_info)
    except PathUnavailableError as e:
        logger.error(f"Error fetching PATH information: {e}")
        return JSONResponse({"error": "Failed to fetch PATH information"}, status_code=500)


@app.get("/api/python")
async def python():
    return await asyncio.to_thread(detect_python)


@app.get("/api/dotnet")
async def dotnet():
    return await asyncio.to_thread(detect_dotnet)


def run(host: str = DEFAULT_HOST, port: int = DEFAULT_PORT):
    import uvicorn
    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    run()
