"""FastAPI application exposing the sign-in, expense and category endpoints."""
from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from datetime import date
from pathlib import Path
from typing import Any, Callable, List, Optional

from fastapi import APIRouter, Depends, FastAPI, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import FileResponse, JSONResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles
from sqlalchemy.orm import Session

from . import crud, database, expenses, models, schemas
from .categories import CategoryStore
from .config import Settings, load_settings
from .errors import (
    AuthenticationRequiredError,
    ErrorCode,
    InvalidInputError,
    SheetLedgerError,
    get_message,
)
from .logging import configure_logging
from .oauth import GoogleOAuthClient
from .provisioning import SpreadsheetProvisioner, normalise_month
from .sessions import (
    CODE_VERIFIER_KEY,
    COOKIE_NAME,
    OAUTH_STATE_KEY,
    USER_KEY,
    SessionStore,
    session_user_id,
)
from .sheets import SheetsGateway, build_gateway
from .token_guard import TokenGuard

LOG = logging.getLogger(__name__)

STATIC_DIR = Path(__file__).resolve().parent / "static"


# --- dependencies -------------------------------------------------------------


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_today(request: Request) -> date:
    return request.app.state.today()


def get_session_store(
    db: Session = Depends(database.get_db),
    settings: Settings = Depends(get_settings),
) -> SessionStore:
    return SessionStore(db, settings)


def get_guard(
    request: Request,
    db: Session = Depends(database.get_db),
    settings: Settings = Depends(get_settings),
) -> TokenGuard:
    return TokenGuard(db, settings, gateway_factory=request.app.state.gateway_factory)


def require_user(
    request: Request,
    response: Response,
    db: Session = Depends(database.get_db),
    store: SessionStore = Depends(get_session_store),
) -> models.User:
    """Resolve the signed-in user and slide the session expiry forward."""
    record = store.load(request.cookies.get(COOKIE_NAME))
    user_id = session_user_id(record)
    if record is None or user_id is None:
        raise AuthenticationRequiredError()
    user = db.get(models.User, user_id)
    if user is None:
        store.destroy(record)
        raise AuthenticationRequiredError()
    store.touch(record)
    store.set_cookie(response, record)
    return user


def _parse_year(raw: Optional[str]) -> int:
    try:
        return int(str(raw).strip())
    except (TypeError, ValueError) as exc:
        raise InvalidInputError(f"Invalid year: {raw!r}") from exc


# --- auth ---------------------------------------------------------------------

auth_router = APIRouter(prefix="/auth", tags=["auth"])


@auth_router.get("/login")
def login(request: Request, store: SessionStore = Depends(get_session_store)) -> RedirectResponse:
    oauth: GoogleOAuthClient = request.app.state.oauth_client
    authorization = oauth.authorization_url()
    pending = {OAUTH_STATE_KEY: authorization.state, CODE_VERIFIER_KEY: authorization.code_verifier}
    record = store.load(request.cookies.get(COOKIE_NAME))
    if record is None:
        record = store.create(pending)
    else:
        record = store.update(record, **pending)
    LOG.info("Redirecting to Google consent")
    response = RedirectResponse(authorization.url, status_code=status.HTTP_302_FOUND)
    store.set_cookie(response, record)
    return response


@auth_router.get("/google/callback")
def google_callback(
    request: Request,
    code: Optional[str] = None,
    error: Optional[str] = None,
    state: Optional[str] = None,
    db: Session = Depends(database.get_db),
    store: SessionStore = Depends(get_session_store),
) -> RedirectResponse:
    if error:
        raise InvalidInputError(f"OAuth error: {error}")
    if not code:
        raise InvalidInputError("Missing authorization code")

    record = store.load(request.cookies.get(COOKIE_NAME))
    pending = record.data if record is not None and record.data else {}
    expected_state = pending.get(OAUTH_STATE_KEY)
    if not expected_state or state != expected_state:
        raise InvalidInputError("Invalid OAuth state. Please sign in again.")

    oauth: GoogleOAuthClient = request.app.state.oauth_client
    tokens = oauth.exchange_code(code, state=state, code_verifier=pending.get(CODE_VERIFIER_KEY))
    info = oauth.fetch_user_info(tokens.credentials)
    user = crud.upsert_user_from_login(db, info, tokens.access_token, tokens.refresh_token)
    signed_in = store.regenerate(record, {USER_KEY: user.id})
    LOG.info("User %s signed in", user.id)

    response = RedirectResponse("/dashboard", status_code=status.HTTP_302_FOUND)
    store.set_cookie(response, signed_in)
    return response


@auth_router.get("/logout")
def logout(request: Request, store: SessionStore = Depends(get_session_store)) -> RedirectResponse:
    store.destroy(store.load(request.cookies.get(COOKIE_NAME)))
    response = RedirectResponse("/?message=logout_success", status_code=status.HTTP_302_FOUND)
    store.clear_cookie(response)
    return response


# --- expenses -----------------------------------------------------------------

expense_router = APIRouter(prefix="/expenses", tags=["expenses"])


@expense_router.get("", response_model=List[List[Any]])
def list_expenses(
    request: Request,
    year: Optional[str] = None,
    month: Optional[str] = None,
    user: models.User = Depends(require_user),
    db: Session = Depends(database.get_db),
    settings: Settings = Depends(get_settings),
    guard: TokenGuard = Depends(get_guard),
) -> List[List[Any]]:
    if not year or not month:
        raise InvalidInputError("Year and month parameters are required")
    month_name = normalise_month(month)
    spreadsheet = expenses.require_spreadsheet(db, settings, user, _parse_year(year))
    today = request.app.state.today

    def operation(gateway: SheetsGateway) -> List[List[Any]]:
        return expenses.ExpenseService(db, settings, gateway, today=today).query_expenses(spreadsheet, month_name)

    return guard.run(user, operation)


@expense_router.post("", response_model=schemas.ExpenseCreated, status_code=status.HTTP_201_CREATED)
def create_expense(
    request: Request,
    payload: schemas.ExpenseCreate,
    user: models.User = Depends(require_user),
    db: Session = Depends(database.get_db),
    settings: Settings = Depends(get_settings),
    guard: TokenGuard = Depends(get_guard),
) -> schemas.ExpenseCreated:
    entry = expenses.prepare_expense(payload, settings)
    today = request.app.state.today

    def operation(gateway: SheetsGateway) -> schemas.ExpenseCreated:
        return expenses.ExpenseService(db, settings, gateway, today=today).add_expense(user, entry)

    return guard.run(user, operation)


@expense_router.get("/summary", response_model=schemas.SummaryRead)
def expense_summary(
    request: Request,
    year: Optional[str] = None,
    user: models.User = Depends(require_user),
    db: Session = Depends(database.get_db),
    settings: Settings = Depends(get_settings),
    guard: TokenGuard = Depends(get_guard),
    today: date = Depends(get_today),
) -> schemas.SummaryRead:
    target_year = _parse_year(year) if year else today.year
    spreadsheet = expenses.find_cached_spreadsheet(db, settings, user, target_year)
    if spreadsheet is None:
        return expenses.empty_summary()
    clock = request.app.state.today

    def operation(gateway: SheetsGateway) -> schemas.SummaryRead:
        return expenses.ExpenseService(db, settings, gateway, today=clock).summarize_year(spreadsheet)

    return guard.run(user, operation)


# --- categories ---------------------------------------------------------------

category_router = APIRouter(prefix="/categories", tags=["categories"])


def _run_on_categories(
    guard: TokenGuard,
    db: Session,
    settings: Settings,
    user: models.User,
    year: int,
    action: Callable[[CategoryStore], Any],
) -> Any:
    """Run ``action`` against the Categories tab of the given year's spreadsheet."""

    def operation(gateway: SheetsGateway) -> Any:
        spreadsheet = SpreadsheetProvisioner(db, settings, gateway).ensure(user, year)
        return action(CategoryStore(gateway, spreadsheet.spreadsheet_id))

    return guard.run(user, operation)


@category_router.get("", response_model=List[schemas.CategoryRead])
def list_categories(
    user: models.User = Depends(require_user),
    db: Session = Depends(database.get_db),
    settings: Settings = Depends(get_settings),
    guard: TokenGuard = Depends(get_guard),
    today: date = Depends(get_today),
) -> List[schemas.CategoryRead]:
    return _run_on_categories(guard, db, settings, user, today.year, lambda store: store.list_categories())


@category_router.post("", response_model=schemas.CategoryRead, status_code=status.HTTP_201_CREATED)
def create_category(
    payload: schemas.CategoryWrite,
    user: models.User = Depends(require_user),
    db: Session = Depends(database.get_db),
    settings: Settings = Depends(get_settings),
    guard: TokenGuard = Depends(get_guard),
    today: date = Depends(get_today),
) -> schemas.CategoryRead:
    if not payload.category_name.strip():
        raise InvalidInputError("Category name is required")
    return _run_on_categories(guard, db, settings, user, today.year, lambda store: store.add(payload.category_name))


@category_router.put("/{category_id}", response_model=schemas.CategoryRead)
def update_category(
    category_id: int,
    payload: schemas.CategoryWrite,
    user: models.User = Depends(require_user),
    db: Session = Depends(database.get_db),
    settings: Settings = Depends(get_settings),
    guard: TokenGuard = Depends(get_guard),
    today: date = Depends(get_today),
) -> schemas.CategoryRead:
    if not payload.category_name.strip():
        raise InvalidInputError("Category name is required")
    return _run_on_categories(
        guard, db, settings, user, today.year, lambda store: store.update(category_id, payload.category_name)
    )


@category_router.delete("/{category_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_category(
    category_id: int,
    user: models.User = Depends(require_user),
    db: Session = Depends(database.get_db),
    settings: Settings = Depends(get_settings),
    guard: TokenGuard = Depends(get_guard),
    today: date = Depends(get_today),
) -> None:
    _run_on_categories(guard, db, settings, user, today.year, lambda store: store.delete(category_id))


# --- pages --------------------------------------------------------------------

page_router = APIRouter(tags=["pages"])


@page_router.get("/dashboard", include_in_schema=False)
def dashboard(
    request: Request,
    db: Session = Depends(database.get_db),
    store: SessionStore = Depends(get_session_store),
) -> Response:
    record = store.load(request.cookies.get(COOKIE_NAME))
    user_id = session_user_id(record)
    if user_id is None:
        return RedirectResponse("/?message=session_expired", status_code=status.HTTP_302_FOUND)
    if db.get(models.User, user_id) is None:
        store.destroy(record)
        response = RedirectResponse("/?message=invalid_session", status_code=status.HTTP_302_FOUND)
        store.clear_cookie(response)
        return response
    store.touch(record)
    response = FileResponse(STATIC_DIR / "dashboard.html")
    store.set_cookie(response, record)
    return response


@page_router.get("/", include_in_schema=False)
def index(request: Request, store: SessionStore = Depends(get_session_store)) -> Response:
    if session_user_id(store.load(request.cookies.get(COOKIE_NAME))) is not None:
        return RedirectResponse("/dashboard", status_code=status.HTTP_302_FOUND)
    return FileResponse(STATIC_DIR / "index.html")


@page_router.get("/health", tags=["system"])
def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


# --- error handlers -----------------------------------------------------------


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(SheetLedgerError)
    async def handle_domain_error(request: Request, exc: SheetLedgerError) -> JSONResponse:
        level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
        LOG.log(
            level,
            "Error %s %s: %s",
            request.method,
            request.url.path,
            exc.message,
            extra={"method": request.method, "path": request.url.path, "status_code": exc.status_code},
        )
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        details = "; ".join(
            f"{'.'.join(str(part) for part in err.get('loc', ()))}: {err.get('msg', '')}" for err in exc.errors()
        )
        LOG.warning(
            "Error %s %s: invalid request (%s)",
            request.method,
            request.url.path,
            details,
            extra={"method": request.method, "path": request.url.path, "status_code": 400},
        )
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": str(ErrorCode.InvalidInput), "message": details or get_message(ErrorCode.InvalidInput)},
        )

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        LOG.exception(
            "Error %s %s",
            request.method,
            request.url.path,
            extra={"method": request.method, "path": request.url.path, "status_code": 500},
        )
        settings: Settings = request.app.state.settings
        message = get_message(ErrorCode.InternalError) if settings.is_production else str(exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": str(ErrorCode.InternalError), "message": message},
        )


# --- factory ------------------------------------------------------------------


def create_app(
    settings: Optional[Settings] = None,
    *,
    gateway_factory: Optional[Callable[[Any], SheetsGateway]] = None,
    oauth_client: Optional[GoogleOAuthClient] = None,
    today: Optional[Callable[[], date]] = None,
) -> FastAPI:
    """Build the application and its process-scoped resources."""
    settings = settings or load_settings()
    configure_logging(json_logs=settings.json_logs, level=settings.log_level)
    # Google reports granted scopes in its own order and adds ``openid``.
    os.environ.setdefault("OAUTHLIB_RELAX_TOKEN_SCOPE", "1")

    engine = database.build_engine(settings.database_url)

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        database.init_db(engine)
        yield
        engine.dispose()

    app = FastAPI(title="SheetLedger", version="1.0.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = database.build_sessionmaker(engine)
    app.state.gateway_factory = gateway_factory or build_gateway
    app.state.oauth_client = oauth_client or GoogleOAuthClient(settings)
    app.state.today = today or date.today

    _register_exception_handlers(app)
    app.include_router(auth_router)
    app.include_router(expense_router)
    app.include_router(category_router)
    app.include_router(page_router)
    app.mount("/static", StaticFiles(directory=STATIC_DIR), name="static")
    return app


__all__ = ["create_app", "require_user"]
