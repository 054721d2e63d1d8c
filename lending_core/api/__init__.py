"""
Lending API Application Factory
"""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import uvicorn

from .. import __version__
from ..config import get_config
from ..exceptions import (
    LendingError, ValidationError, CurrencyMismatchError, AlreadySettledError,
    NotFoundError, DebitCardInUseError
)
from ..logging_config import setup_logging
from .loans import router as loans_router
from .debit_cards import router as debit_cards_router
from .debit_card_transactions import router as debit_card_transactions_router


# Most specific class wins; anything else derived from LendingError is a 400
ERROR_STATUS_CODES = {
    ValidationError: 422,
    CurrencyMismatchError: 422,
    AlreadySettledError: 409,
    NotFoundError: 404,
    DebitCardInUseError: 403,
    LendingError: 400,
}


def _error_handler(status_code: int):
    async def handle(request: Request, exc: LendingError) -> JSONResponse:
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})
    return handle


def create_app() -> FastAPI:
    """Create and configure the FastAPI application"""
    config = get_config()
    setup_logging(level=config.log_level, log_format=config.log_format, log_file=config.log_file)

    app = FastAPI(
        title="Lending Core API",
        description="Loans with scheduled installment repayments, and debit cards",
        version=__version__,
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

    for exc_class, status_code in ERROR_STATUS_CODES.items():
        app.add_exception_handler(exc_class, _error_handler(status_code))

    app.include_router(loans_router, prefix="/loans", tags=["Loans"])
    app.include_router(debit_cards_router, prefix="/debit-cards", tags=["Debit Cards"])
    app.include_router(debit_card_transactions_router, prefix="/debit-card-transactions",
                       tags=["Debit Card Transactions"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "lending_api",
            "version": __version__
        }

    return app


app = create_app()


def run_server(host: str = None, port: int = None, debug: bool = False):
    """Run the FastAPI server"""
    config = get_config()
    uvicorn.run(
        "lending_core.api:app",
        host=host or config.api_host,
        port=port or config.api_port,
        reload=debug,
        log_level=config.log_level.lower()
    )
