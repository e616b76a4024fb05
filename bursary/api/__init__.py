"""
Bursary API Application Factory
"""

from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ..system import BursarySystem
from .ledger import router as ledger_router
from .approvals import router as approvals_router
from .reconciliation import router as reconciliation_router


def create_app(system: Optional[BursarySystem] = None) -> FastAPI:
    """Create and configure the FastAPI application"""
    app = FastAPI(
        title="Bursary API",
        description="School finance ledger: double-entry bookkeeping, approvals and bank reconciliation",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc"
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.system = system or BursarySystem(configure_logging=True)

    app.include_router(ledger_router, prefix="/ledger", tags=["Ledger"])
    app.include_router(approvals_router, prefix="/approvals", tags=["Approvals"])
    app.include_router(reconciliation_router, prefix="/bank", tags=["Bank Reconciliation"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "bursary_api",
            "version": "1.0.0"
        }

    @app.get("/")
    async def get_api_info():
        """Get API information"""
        return {
            "name": "Bursary API",
            "version": "1.0.0",
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "ledger": "/ledger",
                "approvals": "/approvals",
                "bank": "/bank",
            }
        }

    return app


def run_server(host: Optional[str] = None, port: Optional[int] = None, debug: bool = False):
    """Run the FastAPI server"""
    import uvicorn
    from ..config import load_config

    config = load_config()
    uvicorn.run(
        "bursary.api:create_app",
        factory=True,
        host=host or config.api_host,
        port=port or config.api_port,
        reload=debug,
        log_level=config.log_level.lower()
    )
