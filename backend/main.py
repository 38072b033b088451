# backend/main.py
import logging
from contextlib import asynccontextmanager
from pathlib import Path

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from config import settings
from database import init_db
from services.errors import NegotiationError
from utils.events import EventBus
from utils.storage import LocalBlobStore

from routes.orders import router as orders_router
from routes.negotiation import router as negotiation_router
from routes.delivery import router as delivery_router
from routes.invoice import router as invoice_router
from routes.logs import router as logs_router
from routes.realtime import router as realtime_router

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    logger.info("Procurement API started (database %s)", settings.DATABASE_URL.split("://", 1)[0])
    yield
    logger.info("Procurement API stopped")


app = FastAPI(title="Procurement Negotiation API", version="1.0.0", lifespan=lifespan)
app.state.event_bus = EventBus()
app.state.blob_store = LocalBlobStore()

# Uploads: the blob store writes here and the mount serves its URLs
Path(settings.UPLOAD_DIR).mkdir(parents=True, exist_ok=True)
app.mount(settings.UPLOAD_URL_PREFIX, StaticFiles(directory=settings.UPLOAD_DIR), name="uploads")

origins = ["http://localhost:8081", "http://127.0.0.1:8081"]
if settings.FRONTEND_URL and settings.FRONTEND_URL not in origins:
    origins.append(settings.FRONTEND_URL)

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Domain errors are expected outcomes (lost races included); report state, log quietly
@app.exception_handler(NegotiationError)
async def negotiation_error_handler(request: Request, exc: NegotiationError):
    logger.info("%s %s -> %s: %s", request.method, request.url.path, exc.code, exc.detail)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


app.include_router(orders_router)
app.include_router(negotiation_router)
app.include_router(delivery_router)
app.include_router(invoice_router)
app.include_router(logs_router)
app.include_router(realtime_router)


@app.get("/")
def read_root():
    return {"message": "Procurement Negotiation API is running"}


def run():
    uvicorn.run("main:app", host=settings.HOST, port=settings.PORT)


if __name__ == "__main__":
    run()
