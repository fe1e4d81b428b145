import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from chatvault.core.config import settings
from chatvault.core.crypto import get_cipher
from chatvault.core.database import init_db
from chatvault.core.errors import ChatVaultError, ReplyNotPersisted
from chatvault.api import admin, auth, chats, messages

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Configure logging based on debug setting
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s" if settings.debug
        else "%(levelname)-8s %(name)s: %(message)s",
    )

    # Fail at startup, not on the first request, if the key config is unusable
    get_cipher()
    init_db()

    yield


app = FastAPI(title=settings.app_name, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ChatVaultError)
async def chatvault_error_handler(request: Request, exc: ChatVaultError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.__class__.__name__}: {exc.message}")
    else:
        logger.debug(f"{request.method} {request.url.path}: {exc.__class__.__name__}: {exc.message}")
    content = {"detail": exc.message}
    if isinstance(exc, ReplyNotPersisted):
        content["reply"] = exc.reply
    return JSONResponse(status_code=exc.status_code, content=content)


app.include_router(auth.router, prefix="/api/auth", tags=["auth"])
app.include_router(chats.router, prefix="/api/chats", tags=["chats"])
app.include_router(messages.router, prefix="/api/messages", tags=["messages"])
app.include_router(admin.router, prefix="/api/admin", tags=["admin"])


@app.get("/api/health")
async def health():
    return {"status": "ok", "app": settings.app_name}


def run() -> None:
    import uvicorn

    uvicorn.run("chatvault.main:app", host=settings.host, port=settings.port, reload=settings.debug)
