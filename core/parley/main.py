"""Parley - FastAPI application entry point."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from parley import __version__
from parley.api.routes import chat, files, sessions
from parley.api.schemas import HealthResponse
from parley.api.services import Services
from parley.config import ALLOWED_ORIGIN_REGEX, API_PREFIX, HOST, PORT
from parley.utils.logging import logger


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle."""
    logger.info(f"Parley v{__version__} starting...")
    if getattr(app.state, "services", None) is None:
        app.state.services = Services.create()
    logger.info(f"Workspace roots: {app.state.services.resolver.folders}")
    logger.info(f"Server running at http://{HOST}:{PORT}")
    yield
    logger.info("Parley stopped")


app = FastAPI(
    title="Parley",
    description="Chat with a hosted model about the files in your workspace",
    version=__version__,
    lifespan=lifespan,
)

# Configure CORS for the locally served panel
app.add_middleware(
    CORSMiddleware,
    allow_origin_regex=ALLOWED_ORIGIN_REGEX,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register routes
app.include_router(chat.router, prefix=API_PREFIX)
app.include_router(sessions.router, prefix=API_PREFIX)
app.include_router(files.router, prefix=API_PREFIX)


@app.get(f"{API_PREFIX}/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(status="ok", version=__version__)


def run():
    import uvicorn

    uvicorn.run(app, host=HOST, port=PORT)


if __name__ == "__main__":
    run()
