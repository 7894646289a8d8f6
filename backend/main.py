"""
Slab Analyzer - Python Backend
FastAPI server for slab outline detection and marker-based calibration.
"""

import argparse
from contextlib import asynccontextmanager
from typing import Dict

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import uvicorn

from routers import calibration, detection
from slab_geometry2d.strategies import available_strategies


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle."""
    print("Starting Slab Analyzer Backend...")
    print("=" * 50)
    print(f"Contour strategies: {', '.join(available_strategies())}")
    print("Backend ready!")
    print("=" * 50)

    yield

    print("Shutting down Slab Analyzer Backend...")


app = FastAPI(
    title="Slab Analyzer API",
    description="Backend API for slab contour detection and calibration",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS middleware for the desktop/mobile client
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(detection.router, prefix="/api/detection", tags=["Detection"])
app.include_router(calibration.router, prefix="/api/calibration", tags=["Calibration"])


@app.get("/health")
async def health_check() -> Dict[str, str]:
    """Health check endpoint."""
    return {"status": "ok", "service": "slab-analyzer"}


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "name": "Slab Analyzer API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
    }


def main():
    """Main entry point for the backend server."""
    parser = argparse.ArgumentParser(description="Slab Analyzer Backend")
    parser.add_argument("--host", default="127.0.0.1", help="Host to bind to")
    parser.add_argument("--port", type=int, default=8765, help="Port to bind to")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload")

    args = parser.parse_args()

    uvicorn.run(
        "main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
    )


if __name__ == "__main__":
    main()
