import logging
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from partysheet.locking import LockTimeoutError
from partysheet.store import StoreError
from portal import storage
from portal.config import Settings
from portal.routes import router

load_dotenv(Path(__file__).parent.parent / ".env")

logger = logging.getLogger(__name__)


def _error(status: int, message: str) -> JSONResponse:
    return JSONResponse({"success": False, "error": message}, status_code=status)


def create_app(data_dir: Path | None = None, settings: Settings | None = None) -> FastAPI:
    storage.init_storage(settings or Settings.from_env(data_dir))

    app = FastAPI(title="Party Sheet Portal")
    app.include_router(router, prefix="/api")

    # Every failure reaches the client as {"success": false, "error": ...}
    @app.exception_handler(HTTPException)
    async def http_error(request: Request, exc: HTTPException):
        return _error(exc.status_code, str(exc.detail))

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        first = exc.errors()[0] if exc.errors() else {}
        where = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        return _error(422, f"Invalid request: {where}: {first.get('msg', 'bad input')}")

    @app.exception_handler(LockTimeoutError)
    async def lock_timeout(request: Request, exc: LockTimeoutError):
        logger.error("Lock timeout on %s: %s", request.url.path, exc)
        return _error(503, "Data is busy, try again")

    @app.exception_handler(StoreError)
    async def store_error(request: Request, exc: StoreError):
        logger.error("Store error on %s: %s", request.url.path, exc)
        return _error(500, str(exc))

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s", request.url.path)
        return _error(500, "Server error occurred")

    return app


# Default app instance for uvicorn (uses DATA_DIR env var or default)
app = create_app()
