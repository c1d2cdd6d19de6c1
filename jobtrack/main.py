from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from jobtrack.routes.jobs import router as jobs_router
from jobtrack.routes.progress import router as progress_router
from jobtrack.services.config import get_settings
from jobtrack.services.errors import InvalidInputError, NotFoundError

logger = logging.getLogger(__name__)

settings = get_settings()

_EXCEPTION_STATUS = {
    NotFoundError: 404,
    InvalidInputError: 400,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logger.info("jobtrack API using database %s", settings.resolved_database_path)
    yield


def _make_handler(status_code: int):
    async def _handler(request: Request, exc: Exception) -> JSONResponse:
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})

    return _handler


app = FastAPI(title="Jobtrack Analytics API", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.frontend_url, "http://127.0.0.1:5173", "http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

for exc_cls, status_code in _EXCEPTION_STATUS.items():
    app.add_exception_handler(exc_cls, _make_handler(status_code))

app.include_router(jobs_router)
app.include_router(progress_router)


@app.get("/api/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("jobtrack.main:app", host="0.0.0.0", port=settings.api_port)
