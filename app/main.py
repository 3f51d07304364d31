# app/main.py

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
import os
import logging

from app.api.task import router as task_router
from app.api.user import router as user_router

from app.core.settings import settings
from app.core.cache import get_cache
from app.core.exceptions import BaseAppException
from app.schemas.response import fail
from app.initial_data import init_db

# Логирование
logging.basicConfig(level=logging.DEBUG if settings.DEBUG else logging.INFO)
logger = logging.getLogger("uvicorn.error")

app = FastAPI(
    title="Karma Community Tasks API",
    version="1.0.0",
    description="Tasks, hierarchy-based assignment and time logs for a volunteer community",
)

# Middlewares
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Роутеры
app.include_router(task_router)
app.include_router(user_router)

@app.get("/health", tags=["Health"])
def health():
    return {"ok": True, "cache": get_cache().is_available}

@app.on_event("startup")
async def startup_event():
    logger.info("Starting Karma Community Tasks API")
    init_db()

@app.on_event("shutdown")
async def shutdown_event():
    logger.info("Stopping Karma Community Tasks API")
    get_cache().close()

# Все ошибки отдаются клиенту как {success: false, error} с HTTP 200

@app.exception_handler(BaseAppException)
async def app_exception_handler(request: Request, exc: BaseAppException):
    extra = {"requiresHoursLog": True} if getattr(exc, "requires_hours_log", False) else {}
    logger.info(f"{request.method} {request.url.path} -> {type(exc).__name__}: {exc}")
    return JSONResponse(status_code=200, content=fail(str(exc), **extra))

@app.exception_handler(RequestValidationError)
async def request_validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = f"{field}: {first.get('msg')}" if field else str(first.get("msg", "Invalid request"))
    return JSONResponse(status_code=200, content=fail(message))

@app.exception_handler(SQLAlchemyError)
async def database_exception_handler(request: Request, exc: SQLAlchemyError):
    logger.error(f"Database error on {request.method} {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(status_code=200, content=fail("Database error"))

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", 8000)),
        reload=bool(os.getenv("DEBUG", False))
    )
