"""
HTTP surface for holdsim.

``create_app`` wires one ``WorldStore`` plus the economy config and the
events backend onto ``app.state``; the routers read them from there. The
SQLite location comes from ``HOLDSIM_DB_PATH`` (``data/holdsim.db`` when
unset), optionally supplied through a ``.env`` file.
"""

import os
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from holdsim.api.routers import worlds
from holdsim.core.config import EconomyConfig
from holdsim.engines.events import NullEventsEngine
from holdsim.persistence.store import WorldStore

DEFAULT_DB_PATH = "data/holdsim.db"


def _read_env_files() -> None:
    # repository checkout first; a .env in the working directory fills gaps
    repo_root = Path(__file__).resolve().parents[3]
    for candidate in (repo_root / ".env", Path.cwd() / ".env"):
        load_dotenv(candidate)


_read_env_files()


def _open_store() -> WorldStore:
    db_path = os.environ.get("HOLDSIM_DB_PATH", DEFAULT_DB_PATH)
    os.makedirs(os.path.dirname(db_path) or ".", exist_ok=True)
    return WorldStore(db_path=db_path)


def create_app(config: EconomyConfig | None = None) -> FastAPI:
    """Build the API around a freshly opened world store."""
    application = FastAPI(
        title="holdsim API",
        description="Worlds, decisions and weekly ticks for the holding-company simulation",
        version="0.1.0",
    )
    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.state.store = _open_store()
    application.state.config = config or EconomyConfig()
    application.state.events_engine = NullEventsEngine()

    application.include_router(worlds.router, prefix="/api/worlds", tags=["worlds"])

    @application.get("/api/health")
    def health_check():
        return {"status": "ok"}

    return application
