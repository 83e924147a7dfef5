import logging
from contextlib import asynccontextmanager
from typing import List

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse

from . import config
from .dependencies import Services, get_services
from .errors import SignflowError
from .routers import documents, signing, templates
from .services.narration import Announcement

# Configure logging
logging.basicConfig(level=config.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Wire the in-memory session on startup"""
    logger.info("Starting signflow session...")
    app.state.services = Services()
    yield
    logger.info("Signflow session closed with %d document(s) in memory", len(app.state.services.store))


app = FastAPI(title="Signflow", lifespan=lifespan)


@app.exception_handler(SignflowError)
async def signflow_error_handler(request: Request, exc: SignflowError):
    logger.info("%s %s rejected: %s", request.method, request.url.path, exc.detail)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail, "error": type(exc).__name__})


# Mount API routers
app.include_router(documents.router, prefix="/documents", tags=["documents"])
app.include_router(signing.router, prefix="/signing", tags=["signing"])
app.include_router(templates.router, prefix="/templates", tags=["templates"])


@app.get("/narration", response_model=List[Announcement])
def drain_narration(services: Services = Depends(get_services)):
    """Announcements waiting to be spoken, highest priority first"""
    return services.narrator.drain()


@app.get("/health")
def health_check(services: Services = Depends(get_services)):
    """Health check endpoint for debugging"""
    return {
        "status": "ok",
        "documents": len(services.store),
        "narration": "enabled" if services.narrator.enabled else "disabled",
    }
