"""
Parameter Lab - FastAPI Backend
Main application entry point with health check and API routing.
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from config import missing_generation_settings, settings
from database import async_session_maker, engine, Base
import models  # noqa: F401
from pipeline.builder import build_generation_pipeline
from routers import calibrations, generate, health


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    # Startup
    print("🚀 Starting Parameter Lab API...")
    missing = missing_generation_settings(settings)
    if missing:
        print(f"⚠️ Generation requests will fail until configured: {', '.join(missing)}")
    if settings.AUTO_CREATE_DB_SCHEMA:
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            print("🗄️ Database schema verified.")
        except Exception as e:
            print(f"⚠️ Database bootstrap skipped: {e}")
    yield
    # Shutdown
    await app.state.generation_pipeline.aclose()
    print("👋 Shutting down API...")


app = FastAPI(
    title="Parameter Lab API",
    description="Calibrate generation parameters and run prompt experiments",
    version="0.1.0",
    lifespan=lifespan,
)

app.state.generation_pipeline = build_generation_pipeline(settings, async_session_maker)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health.router, prefix="/api", tags=["Health"])
app.include_router(generate.router, prefix="/api", tags=["Generation"])
app.include_router(calibrations.router, prefix="/api/calibrations", tags=["Calibration"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Parameter Lab API",
        "version": "0.1.0",
        "status": "running"
    }
