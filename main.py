import os
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles
from bulkdeals.api.endpoints import batches, products
from bulkdeals.core.config import settings
from bulkdeals.core.logging_config import setup_logging
from loguru import logger
from bulkdeals.core.middleware import log_request_middleware, setup_exception_handlers
from starlette.middleware.base import BaseHTTPMiddleware
from fastapi.middleware.cors import CORSMiddleware

# Initialize Logging
setup_logging()

# Generated variants are written here and served back under /exports
os.makedirs(settings.EXPORT_DIR, exist_ok=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {settings.PROJECT_NAME}...")
    yield
    logger.info(f"Stopping {settings.PROJECT_NAME}...")


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    description="Bulk product onboarding: groups raw photos into products, generates AI variants and drafts listings.",
    lifespan=lifespan,
)

# Add Middleware
app.add_middleware(BaseHTTPMiddleware, dispatch=log_request_middleware)
setup_exception_handlers(app)

# Add CORS last so it runs first (outermost)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["*"],
)

app.mount("/exports", StaticFiles(directory=settings.EXPORT_DIR), name="exports")

@app.get("/")
async def root():
    return {
        "app": settings.PROJECT_NAME,
        "version": settings.VERSION,
        "status": "online"
    }

# Include Routers
app.include_router(batches.router, prefix=f"{settings.API_V1_STR}/batches", tags=["Batches"])
app.include_router(products.router, prefix=f"{settings.API_V1_STR}/products", tags=["Products"])

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8080, reload=True)
