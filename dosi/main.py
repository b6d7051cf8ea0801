"""Dosi Server - FastAPI Application Entry Point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from dosi.api.deps import status_for
from dosi.config import settings
from dosi.schemas.system import ServerInfoResponse
from dosi.services.auth_service import ensure_credentials
from dosi.services.registry import DeviceRegistry, RegistryError
from dosi.store import create_store
from dosi.utils.activity_log import configure_activity_log, log_activity

VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the store, repair interrupted adoptions, seed operator credentials."""
    configure_activity_log(settings.log_path)
    ensure_credentials()

    registry = DeviceRegistry(create_store(settings), settings.unknown_status_text)
    if settings.reconcile_on_startup:
        registry.reconcile()
    app.state.registry = registry

    log_activity(None, f"Device management server running on http://{settings.host}:{settings.port}")
    yield


app = FastAPI(
    title="Dosi",
    description="Device adoption and provisioning registry",
    version=VERSION,
    lifespan=lifespan,
)


@app.exception_handler(RegistryError)
async def registry_error_handler(request: Request, exc: RegistryError):
    return JSONResponse(status_code=status_for(exc), content={"detail": str(exc)})


# --- Register API routers ---
from dosi.api.auth import router as auth_router  # noqa: E402
from dosi.api.checkin import router as checkin_router  # noqa: E402
from dosi.api.devices import router as devices_router  # noqa: E402
from dosi.api.groups import router as groups_router  # noqa: E402
from dosi.api.system import router as system_router  # noqa: E402

API_PREFIX = "/api/v1"

app.include_router(checkin_router)
app.include_router(auth_router, prefix=API_PREFIX)
app.include_router(devices_router, prefix=API_PREFIX)
app.include_router(groups_router, prefix=API_PREFIX)
app.include_router(system_router, prefix=API_PREFIX)


@app.get("/", response_model=ServerInfoResponse)
def root():
    """Health check / server info."""
    return ServerInfoResponse(
        name=settings.server_name,
        version=VERSION,
        status="running",
        store_backend=settings.store_backend,
    )


def run() -> None:
    import uvicorn

    logging.basicConfig(level=logging.DEBUG if settings.debug else logging.INFO)
    uvicorn.run("dosi.main:app", host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
