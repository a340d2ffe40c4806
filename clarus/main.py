from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from clarus.api.routes import content, webhooks
from clarus.config import settings
from clarus.services.logger import logger


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Clarus pipeline service starting")
    yield
    logger.info("Clarus pipeline service stopped")


app = FastAPI(
    title="Clarus",
    description="Content analysis pipeline: acquisition, enrichment and AI section generation",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routes
app.include_router(content.router)
app.include_router(webhooks.router)


@app.get("/api/health")
async def health():
    return {"status": "ok", "service": "clarus"}
