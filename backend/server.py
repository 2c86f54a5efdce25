from fastapi import FastAPI, APIRouter, Request
from fastapi.responses import JSONResponse
from dotenv import load_dotenv
from starlette.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError
import os
import logging
from pathlib import Path

from bootstrap import run_bootstrap_migrations
from errors import DependencyFailure, ServiceError
from routers.events_admin import router as events_admin_router
from routers.registrations import router as registrations_router

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# Configure logging
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

app = FastAPI(title="Festival Registration API", version="1.0.0")
api_router = APIRouter(prefix="/api")


# ==================== ERRORS ====================
@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s (%s)", request.method, request.url.path, exc.code, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(SQLAlchemyError)
async def store_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error("Store error on %s %s: %s", request.method, request.url.path, exc)
    failure = DependencyFailure("StoreUnavailable", "The data store is unavailable")
    return JSONResponse(status_code=failure.status_code, content=failure.to_dict())


# ==================== STARTUP ====================
@app.on_event("startup")
async def startup_event():
    run_bootstrap_migrations()
    logger.info("Festival registration API started")


# ==================== HEALTH ====================
@api_router.get("/health")
def health():
    return {"status": "ok"}


# Include routers and add middleware
api_router.include_router(registrations_router)
api_router.include_router(events_admin_router)
app.include_router(api_router)

app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=os.environ.get('CORS_ORIGINS', '*').split(','),
    allow_methods=["*"],
    allow_headers=["*"],
)
