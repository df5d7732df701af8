"""
FastAPI REST API Module

Provides the account, login and transfer endpoints. Routes under
``/account/{account_id}`` are gated by the JWT dependency in ``auth``.
Runs on port 3000 by default.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional
import logging

from fastapi import Depends, FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import uvicorn

from . import __version__
from .accounts import Account, open_account
from .auth import BankSystem, JWT_HEADER, get_bank_system, require_account_access
from .errors import AccountNotFound, BankAPIError, PermissionDenied, StorageError
from .logging_config import log_action
from .schemas import CreateAccountRequest, LoginRequest, LoginResponse, TransferRequest

logger = logging.getLogger("bank_api.api")


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def register_exception_handlers(app: FastAPI) -> None:
    """Translate service errors into the ``{"error": ...}`` envelope"""

    @app.exception_handler(PermissionDenied)
    async def permission_denied_handler(request: Request, exc: PermissionDenied):
        return _error(status.HTTP_403_FORBIDDEN, "permission denied")

    @app.exception_handler(AccountNotFound)
    async def account_not_found_handler(request: Request, exc: AccountNotFound):
        return _error(status.HTTP_404_NOT_FOUND, str(exc))

    @app.exception_handler(StorageError)
    async def storage_error_handler(request: Request, exc: StorageError):
        logger.error("Storage failure on %s %s: %s", request.method, request.url.path, exc)
        return _error(status.HTTP_503_SERVICE_UNAVAILABLE, "storage unavailable")

    @app.exception_handler(BankAPIError)
    async def bank_api_error_handler(request: Request, exc: BankAPIError):
        return _error(status.HTTP_400_BAD_REQUEST, str(exc))

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        message = errors[0]["msg"] if errors else "invalid request"
        return _error(status.HTTP_400_BAD_REQUEST, message)


def register_routes(app: FastAPI) -> None:

    @app.get("/health")
    def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "bank_api",
            "version": __version__,
            "timestamp": datetime.now(timezone.utc).isoformat()
        }

    @app.get("/account")
    def handle_get_accounts(system: BankSystem = Depends(get_bank_system)):
        """List all accounts"""
        return [account.to_dict() for account in system.store.get_accounts()]

    @app.post("/account")
    def handle_create_account(
        request: CreateAccountRequest,
        system: BankSystem = Depends(get_bank_system)
    ):
        """Open a new account with a random account number"""
        account = open_account(
            system.store,
            first_name=request.first_name,
            last_name=request.last_name,
            password=request.password,
        )
        log_action(
            logger, "info", "Account created",
            account_number=account.number, action="create", resource="account"
        )
        return account.to_dict()

    @app.get("/account/{account_id}")
    def handle_get_account_by_id(account: Account = Depends(require_account_access)):
        """Get the caller's own account"""
        return account.to_dict()

    @app.delete("/account/{account_id}")
    def handle_delete_account(
        account: Account = Depends(require_account_access),
        system: BankSystem = Depends(get_bank_system)
    ):
        """Delete the caller's own account"""
        system.store.delete_account(account.id)
        log_action(
            logger, "info", "Account deleted",
            account_number=account.number, action="delete", resource="account"
        )
        return {"deleted": account.id}

    @app.post("/login", response_model=LoginResponse)
    def handle_login(
        request: LoginRequest,
        system: BankSystem = Depends(get_bank_system)
    ):
        """Exchange an account number and password for a token"""
        try:
            account = system.store.get_account_by_number(request.number)
        except AccountNotFound:
            log_action(
                logger, "warning", "Login failed: unknown account number",
                account_number=request.number, action="login_failed", resource="auth"
            )
            raise PermissionDenied("unknown account number")

        if not account.valid_password(request.password):
            log_action(
                logger, "warning", "Login failed: wrong password",
                account_number=account.number, action="login_failed", resource="auth"
            )
            raise PermissionDenied("wrong password")

        token = system.tokens.issue(account)
        log_action(
            logger, "info", "Login successful",
            account_number=account.number, action="login", resource="auth"
        )
        return LoginResponse(number=account.number, token=token)

    @app.post("/transfer")
    def handle_transfer(request: TransferRequest):
        """Accept a transfer request; balances are not moved"""
        return request.model_dump()


def create_app(system: Optional[BankSystem] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    When ``system`` is omitted one is built from configuration at startup
    and closed at shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = getattr(app.state, "bank_system", None) is None
        if owned:
            app.state.bank_system = BankSystem()
            logger.info("Bank system initialized")
        yield
        if owned:
            app.state.bank_system.close()
            app.state.bank_system = None
            logger.info("Bank system closed")

    app = FastAPI(
        title="Bank API",
        description="Accounts with JWT-protected access",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )
    app.state.bank_system = system

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["content-type", JWT_HEADER],
    )

    register_exception_handlers(app)
    register_routes(app)
    return app


app = create_app()


def run_server(host: str = "0.0.0.0", port: int = 3000, debug: bool = False):
    """Run the FastAPI server"""
    uvicorn.run(
        "bank_api.api:app",
        host=host,
        port=port,
        reload=debug,
        log_level="info"
    )
