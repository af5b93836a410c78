from __future__ import annotations

from fastapi import FastAPI

from meter_provisioning.config import AppSettings, get_settings
from meter_provisioning.logging import configure_logging
from meter_provisioning.proxy import create_edge_proxy
from meter_provisioning.routes.log import router as log_router
from meter_provisioning.routes.proxy import create_proxy_router
from meter_provisioning.routes.reference import router as reference_router


def create_app(settings: AppSettings | None = None) -> FastAPI:
    app_settings = settings or get_settings()
    configure_logging(app_settings)

    app = FastAPI(title="Meter Provisioning", version="0.1.0")
    app.state.settings = app_settings
    app.state.edge_proxy = create_edge_proxy(app_settings)

    app.include_router(log_router)
    app.include_router(reference_router)
    app.include_router(create_proxy_router(app_settings.proxy_path_prefix))

    @app.get("/", tags=["system"], name="root")
    async def root() -> dict[str, str]:
        return {"service": "meter-provisioning", "status": "ok"}

    @app.get("/healthz", tags=["system"])
    async def healthz() -> dict[str, str]:
        return {"status": "ok"}

    return app


app = create_app()
