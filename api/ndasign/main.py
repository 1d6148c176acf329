import logging
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from .backends import build_signature_backend
from .config import LOG_LEVEL
from .db import init_db
from .directory import TransactionDirectory
from .errors import NdaError
from .routers import nda, webhooks

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="NDA Signing API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.on_event("startup")
def on_startup():
    init_db()
    app.state.directory = TransactionDirectory()
    app.state.signature_backend = build_signature_backend()
    logger.info("NDA signing API started with %s backend", app.state.signature_backend.name)

@app.on_event("shutdown")
def on_shutdown():
    app.state.directory.close()

@app.exception_handler(NdaError)
def handle_nda_error(request: Request, exc: NdaError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

app.include_router(webhooks.router, prefix="/api/nda", tags=["webhooks"])
app.include_router(nda.router, prefix="/api/nda", tags=["nda"])

@app.get("/")
def root():
    return {"ok": True, "service": "nda-signing-api"}
