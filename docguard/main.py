import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from docguard.api.routers import audit, auth, documents, mfa
from docguard.core.config import get_settings
from docguard.core.logging import configure_logging
from docguard.db.base import Base
from docguard.db.session import engine

settings = get_settings()
configure_logging(settings)
logger = logging.getLogger(__name__)

docs_url = "/docs" if settings.enable_docs else None
redoc_url = "/redoc" if settings.enable_docs else None
openapi_url = "/openapi.json" if settings.enable_docs else None

app = FastAPI(title=settings.app_name, version="0.1.0", docs_url=docs_url, redoc_url=redoc_url, openapi_url=openapi_url)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=True,
)

app.include_router(auth.router, prefix="/api")
app.include_router(mfa.router, prefix="/api")
app.include_router(documents.router, prefix="/api")
app.include_router(audit.router, prefix="/api")


@app.on_event("startup")
def on_startup():
    if not settings.session_secret:
        raise RuntimeError("DOCGUARD_SESSION_SECRET must be set")
    if not settings.encryption_master_key:
        logger.warning("DOCGUARD_ENCRYPTION_MASTER_KEY not set; MFA secrets are encrypted with the session secret")
    Base.metadata.create_all(bind=engine)
    logger.info(f"{settings.app_name} started")


@app.get("/api/health")
def health():
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("docguard.main:app", host="0.0.0.0", port=8000)
