"""
FastAPI app exposing the reconciler to platform admins.
Run with: uvicorn reconciler.main:app --reload
"""
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from reconciler.exceptions import ConfigurationError, MigrationError, StoreUnavailableError
from reconciler.logging_config import get_logger
from reconciler.router import router


logger = get_logger("main")

app = FastAPI(title="Institution Reconciler", version="1.0.0")
app.include_router(router)


@app.exception_handler(StoreUnavailableError)
async def store_unavailable_handler(request: Request, exc: StoreUnavailableError):
    logger.error("%s unavailable during %s: %s", exc.store, request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": str(exc), "store": exc.store})


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    logger.error("Configuration error during %s: %s", request.url.path, exc)
    return JSONResponse(status_code=500, content={"detail": str(exc)})


@app.exception_handler(MigrationError)
async def migration_error_handler(request: Request, exc: MigrationError):
    logger.error("Migration aborted: %s", exc)
    return JSONResponse(status_code=500, content={"detail": str(exc)})


@app.get("/")
def root():
    return {"message": "Institution Reconciler API"}
