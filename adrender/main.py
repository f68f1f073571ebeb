import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from adrender.api import render
from adrender.config import get_settings

settings = get_settings()

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Report request validation errors as 400 with the first problem spelled out."""
    errors = exc.errors()
    message = "Invalid render request"
    if errors:
        first_error = errors[0]
        loc = " -> ".join(str(x) for x in first_error.get("loc", []))
        message = f"{loc}: {first_error.get('msg', 'Validation error')}"
    return JSONResponse(status_code=400, content={"error": message})


app.include_router(render.router, prefix="/api", tags=["render"])


@app.get("/health")
async def health_check() -> dict:
    return {"status": "healthy", "version": settings.app_version}
