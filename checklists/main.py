import logging
import traceback

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import FileResponse, JSONResponse
from fastapi.staticfiles import StaticFiles

from . import config
from .db import init_db, seed_demo
from .errors import ChecklistError, NotFoundError
from .routers import reports, responses
from .services import get_storage

logger = logging.getLogger("checklists.api")


def create_app() -> FastAPI:
    if config.DEBUG:
        logging.getLogger("checklists").setLevel(logging.DEBUG)

    app = FastAPI(title="checklists-operacionais", version="0.1.0")

    @app.exception_handler(ChecklistError)
    async def _checklist_error_handler(request: Request, exc: ChecklistError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())

    @app.exception_handler(RequestValidationError)
    async def _request_validation_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        message = errors[0].get("msg", "Requisição inválida") if errors else "Requisição inválida"
        return JSONResponse(status_code=422, content={"error": "validation_error", "message": message})

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        content = {"error": "internal_error", "message": "Erro interno do servidor"}
        if config.DEBUG:
            content["trace"] = "".join(traceback.format_exception(exc))
        return JSONResponse(status_code=500, content=content)

    @app.on_event("startup")
    def _startup() -> None:
        init_db()
        if config.SEED_DEMO:
            seed_demo()

    # signed links must win over the static mount below
    @app.get("/uploads/signed/{token}", include_in_schema=False)
    def signed_download(token: str):
        path = get_storage().resolve_download_token(token)
        if path is None:
            raise NotFoundError("Link expirado ou inválido.")
        return FileResponse(str(path))

    app.include_router(responses.router)
    app.include_router(reports.router)

    storage = get_storage()
    app.mount("/uploads", StaticFiles(directory=str(storage.root)), name="uploads")
    return app


app = create_app()
