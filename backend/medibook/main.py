import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response

from .config import get_settings
from .database import create_schema
from .routers import appointments, doctors, ratings, stays
from .utils.request_id import REQUEST_ID_HEADER, accept_request_id, set_request_id

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    if get_settings().create_schema:
        await create_schema()
        logger.info("database schema ensured")
    yield


app = FastAPI(title="Medibook Scheduling API", lifespan=lifespan)


async def request_id_middleware(request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
    request_id = accept_request_id(request.headers.get(REQUEST_ID_HEADER))
    set_request_id(request_id)
    try:
        response = await call_next(request)
    finally:
        set_request_id(None)
    response.headers[REQUEST_ID_HEADER] = request_id
    return response


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    # Malformed input is a 400 so clients can tell it apart from 404 and 409.
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": jsonable_encoder(exc.errors())},
    )


app.middleware("http")(request_id_middleware)
app.add_exception_handler(RequestValidationError, validation_error_handler)  # type: ignore[arg-type]


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


app.include_router(doctors.router)
app.include_router(appointments.router)
app.include_router(ratings.router)
app.include_router(stays.router)
