"""FastAPI application entrypoint."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from voxbook.api import router
from voxbook.core.settings import APP_VERSION, PATHS
from voxbook.db.base import Base
from voxbook.db.session import engine
from voxbook.models import Job, JobEvent  # noqa: F401
from voxbook.services.config_store import load_config, save_config
from voxbook.workers.queue import recover_jobs

logger = logging.getLogger(__name__)


def configure_logging(level: int = logging.INFO) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def create_app() -> FastAPI:
    @asynccontextmanager
    async def lifespan(_: FastAPI):
        PATHS.runtime_root.mkdir(parents=True, exist_ok=True)
        PATHS.jobs_root.mkdir(parents=True, exist_ok=True)

        Base.metadata.create_all(bind=engine)

        # Ensure config file exists with defaults.
        if not PATHS.config_path.exists():
            save_config(load_config())

        recovered = recover_jobs()
        logger.info("Startup recovery: %s", recovered)

        yield

    app = FastAPI(title="Voxbook", version=APP_VERSION, lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router)

    return app


configure_logging()
app = create_app()
