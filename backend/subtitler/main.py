"""FastAPI application entrypoint."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from subtitler.api import router
from subtitler.api.deps import Services, build_services
from subtitler.api.errors import ApiError, api_error_handler
from subtitler.core.settings import APP_VERSION, PATHS, configure_logging
from subtitler.services.config_store import load_config, save_config
from subtitler.workers.scheduler import build_maintenance_tasks


def create_app(services: Optional[Services] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging()
        paths = services.paths if services is not None else PATHS
        for directory in (paths.runtime_root, paths.uploads_root, paths.temp_root, paths.downloads_root):
            directory.mkdir(parents=True, exist_ok=True)

        # Ensure config file exists with defaults.
        if not paths.config_path.exists():
            save_config(load_config(paths.config_path), paths.config_path)

        app.state.services = services or build_services(paths)
        cfg = app.state.services.load_config()
        tasks = build_maintenance_tasks(
            app.state.services.store,
            app.state.services.admission,
            job_retention_s=cfg.jobs.retention_s,
            job_sweep_interval_s=cfg.jobs.sweep_interval_s,
            admission_eviction_interval_s=cfg.admission.eviction_interval_s,
        )
        for task in tasks:
            task.start()
        try:
            yield
        finally:
            for task in tasks:
                await task.stop()

    app = FastAPI(title="Subtitler", version=APP_VERSION, lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(ApiError, api_error_handler)

    app.include_router(router)

    return app


app = create_app()
