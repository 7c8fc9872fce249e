import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import HTTPException
from fastapi.responses import JSONResponse

from app.config import DATA_DIR
from app.constants import HTTP_STATUS_TO_CODE
from app.exceptions import CustodyError
from app.routers import auth_router, resources_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Creates the data directory (default SQLite location) on startup."""
    DATA_DIR.mkdir(parents=True, exist_ok=True)
    yield


app = FastAPI(title="Resource Allocation", lifespan=lifespan)


def _error_code_from_exception(exc: HTTPException) -> str:
    """Error code for the JSON body: exc.detail["code"] when given, else by status_code."""
    if isinstance(getattr(exc, "detail", None), dict) and "code" in exc.detail:
        return exc.detail["code"]
    return HTTP_STATUS_TO_CODE.get(exc.status_code, "error")


def _detail_for_json(exc: HTTPException):
    d = getattr(exc, "detail", None)
    if isinstance(d, dict) and "message" in d:
        return d["message"]
    return d


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    content = {
        "detail": _detail_for_json(exc),
        "code": _error_code_from_exception(exc),
    }
    return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))


@app.exception_handler(CustodyError)
async def custody_error_handler(request: Request, exc: CustodyError):
    """Domain errors -> {detail, code} with the status the error class declares."""
    if exc.status_code >= 500:
        logger.error("custody_error path=%s code=%s details=%s", request.url.path, exc.code, exc.details)
    else:
        logger.info("custody_rejected path=%s code=%s details=%s", request.url.path, exc.code, exc.details)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code},
    )


app.include_router(auth_router.router)
app.include_router(resources_router.router)
