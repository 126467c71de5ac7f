import logging
import os

import socketio
from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse

from pitchperfect.config import settings
from pitchperfect.api import agents, practice, presentations
from pitchperfect.services.errors import PracticeError
from pitchperfect.ws.handler import sio

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    datefmt="%H:%M:%S",
)

# Suppress noisy third-party loggers
logging.getLogger("google_genai").setLevel(logging.WARNING)
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("openai").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    "not_found": 404,
    "invalid_transition": 409,
    "timeline_error": 409,
    "permission_denied": 403,
    "connection_failure": 502,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Auto-create tables on startup (SQLite, no migration step needed)
    from pitchperfect.models.base import init_db
    await init_db()
    logger.info("Database tables created / verified")

    os.makedirs(settings.storage_dir, exist_ok=True)
    yield


app = FastAPI(
    title="PitchPerfect API",
    description="Presentation practice with a live AI audience",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(presentations.router, prefix="/api/presentations", tags=["presentations"])
app.include_router(agents.router, prefix="/api/agents", tags=["agents"])
app.include_router(practice.router, prefix="/api/practice", tags=["practice"])


@app.exception_handler(PracticeError)
async def practice_error_handler(request: Request, exc: PracticeError):
    return JSONResponse(
        status_code=ERROR_STATUS.get(exc.code, 500),
        content={"detail": str(exc), "code": exc.code},
    )


@app.get("/api/health")
async def health():
    return {"status": "ok", "version": "0.1.0"}


# ---------------------------------------------------------------------------
# Static file serving from local storage
# ---------------------------------------------------------------------------
MIME_MAP = {
    ".mp3": "audio/mpeg",
    ".wav": "audio/wav",
    ".webm": "video/webm",
    ".json": "application/json",
    ".md": "text/markdown",
}


@app.get("/api/files/{file_path:path}")
async def serve_file(file_path: str):
    """Serve files from the local storage directory."""
    full_path = os.path.join(settings.storage_dir, file_path)
    # Prevent directory traversal
    full_path = os.path.realpath(full_path)
    storage_real = os.path.realpath(settings.storage_dir)
    if not full_path.startswith(storage_real + os.sep):
        raise HTTPException(status_code=403, detail="Access denied")
    if not os.path.isfile(full_path):
        raise HTTPException(status_code=404, detail="File not found")

    ext = os.path.splitext(full_path)[1].lower()
    media_type = MIME_MAP.get(ext, "application/octet-stream")
    return FileResponse(full_path, media_type=media_type)


# Mount Socket.IO as ASGI sub-app
socket_app = socketio.ASGIApp(sio, other_asgi_app=app)
