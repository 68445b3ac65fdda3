import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from deployment_service.api.routes.deployments import router as deployments_router
from deployment_service.api.routes.usage import router as usage_router
from deployment_service.core.errors import (
    AlreadyExistsError,
    ConcurrencyError,
    DeploymentServiceError,
    InvalidStateError,
    NotFoundError,
    ProviderError,
    ValidationError,
)

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

logger = logging.getLogger(__name__)

app = FastAPI(title="Deployment Service API")


def status_code_for(error: DeploymentServiceError) -> int:
    if isinstance(error, NotFoundError):
        return 404
    if isinstance(error, ValidationError):
        return 400
    if isinstance(error, (InvalidStateError, ConcurrencyError, AlreadyExistsError)):
        return 409
    if isinstance(error, ProviderError):
        return 502
    return 500


@app.exception_handler(DeploymentServiceError)
async def handle_service_error(request: Request, exc: DeploymentServiceError):
    status_code = status_code_for(exc)
    if status_code >= 500:
        logger.error(f"[api] {request.method} {request.url.path} -> {status_code}: {exc}")
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


@app.get("/health")
def health():
    return {"status": "ok"}


app.include_router(deployments_router)
app.include_router(usage_router)


if __name__ == "__main__":
    import uvicorn

    logger.info("Starting Deployment Service API on 0.0.0.0:4000")

    uvicorn.run(
        app,
        host="0.0.0.0",
        port=4000,
        log_level="info"
    )
