"""
Payout Engine API Application Factory
"""

from fastapi import FastAPI
import uvicorn

from .. import __version__
from .lms_files import router as lms_files_router
from .payouts import router as payouts_router
from .reference import router as reference_router


def create_app() -> FastAPI:
    """Create and configure the FastAPI application"""
    app = FastAPI(
        title="Selldown Payout Engine API",
        description="Partner payout calculation and opening position reconciliation",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )

    # Include routers
    app.include_router(lms_files_router, prefix="/lms-files", tags=["LMS Files"])
    app.include_router(payouts_router, prefix="/payouts", tags=["Payouts"])
    app.include_router(reference_router, tags=["Reference Data"])

    # Health check endpoint
    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "selldown_payout_engine",
            "version": __version__
        }

    return app


def run_server(host: str = "0.0.0.0", port: int = 8095, debug: bool = False):
    """Run the FastAPI server"""
    uvicorn.run(
        "selldown.api:create_app",
        factory=True,
        host=host,
        port=port,
        reload=debug,
        log_level="info"
    )
