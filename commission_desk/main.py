"""FastAPI entry point for the commission service."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.responses import JSONResponse

from commission_desk import __version__
from commission_desk.config import configure_logging
from commission_desk.database import init_db
from commission_desk.errors import CommissionError
from commission_desk.routers import auth, commissions, facts, rate_tables

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    configure_logging()
    init_db()
    yield


app = FastAPI(title="Commission Desk", version=__version__, lifespan=lifespan)

app.include_router(auth.router)
app.include_router(commissions.router)
app.include_router(rate_tables.router)
app.include_router(facts.router)


@app.get("/health")
def health() -> Response:
    """Simple health endpoint for load balancers and platform checks."""
    return Response(content='{"status":"ok"}', media_type="application/json")


@app.exception_handler(CommissionError)
async def commission_error_handler(request: Request, exc: CommissionError):
    """Render engine errors as JSON with their machine-readable code."""
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "code": exc.code})


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=exc.headers)
