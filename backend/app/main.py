import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from backend.app.api.v1.router import router as v1_router
from backend.app.core.config import get_settings
from backend.app.core.logging import setup_logging
from backend.services.errors import DomainError

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    settings = get_settings()
    setup_logging()

    app = FastAPI(title=settings.APP_NAME, version=settings.APP_VERSION)
    app.include_router(v1_router, prefix=settings.API_PREFIX)

    @app.exception_handler(DomainError)
    async def domain_error_handler(request: Request, exc: DomainError):
        # la session de la requête est fermée par get_db -> rollback
        logger.info("%s %s refused: %s (%s)", request.method, request.url.path, exc.kind, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=422,
            content={"kind": "validation_error", "detail": jsonable_encoder(exc.errors())},
        )

    return app


app = create_app()
