"""Smart image converter service: FastAPI app, CORS and the session id header."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from converter.advisor import get_advisor
from converter.api.routes import router
from converter.config import (
    ADVISOR_RETRY_ATTEMPTS,
    ADVISOR_RETRY_DELAY,
    CORS_ORIGINS,
    MAX_IMAGE_SIZE_MB,
    logger,
)
from converter.session import get_session_store

logging.getLogger("uvicorn").setLevel(logging.INFO)


@asynccontextmanager
async def lifespan(app: FastAPI):
    advisor = get_advisor()
    logger.info(
        "Image converter ready (advisor=%s, %s attempts, %.1fs backoff, %s MB per image)",
        advisor.name, ADVISOR_RETRY_ATTEMPTS, ADVISOR_RETRY_DELAY, MAX_IMAGE_SIZE_MB,
    )
    get_session_store()
    yield
    logger.info("Image converter stopping; in-memory sessions are dropped")


app = FastAPI(
    title="Smart Image Converter API",
    description="Convert images to WebP, PNG, JPEG or AVIF with AI-adjusted compression settings.",
    version="1.0.0",
    lifespan=lifespan,
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS or ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    # browsers only let the client read the new session id if it is exposed
    expose_headers=["X-Session-ID", "Content-Disposition"],
)


@app.middleware("http")
async def attach_session_id(request: Request, call_next):
    """Echo a freshly issued session id so the client can keep using it."""
    response = await call_next(request)
    session_id = getattr(request.state, "session_id", None)
    if session_id:
        response.headers["X-Session-ID"] = session_id
    return response


app.include_router(router)


def run() -> None:
    import uvicorn
    from converter.config import HOST, PORT
    uvicorn.run("converter.main:app", host=HOST, port=PORT)


if __name__ == "__main__":
    run()
