"""Access-token guard wrapping every Google call made on behalf of a user."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, TypeVar

import google.auth.exceptions
import google.auth.transport.requests
import google.oauth2.credentials
from sqlalchemy.orm import Session

from . import crud, models
from .config import TOKEN_URI, Settings
from .errors import CredentialsExpiredError, ReauthenticationRequiredError
from .sheets import SheetsGateway, build_gateway

LOG = logging.getLogger(__name__)

T = TypeVar("T")

GatewayFactory = Callable[[Any], SheetsGateway]
CredentialsFactory = Callable[[models.User, Settings], Any]


def build_credentials(user: models.User, settings: Settings) -> google.oauth2.credentials.Credentials:
    """Build OAuth credentials from the tokens stored on ``user``."""

    return google.oauth2.credentials.Credentials(
        token=user.access_token,
        refresh_token=user.refresh_token,
        token_uri=TOKEN_URI,
        client_id=settings.google_client_id,
        client_secret=settings.google_client_secret,
        scopes=list(settings.oauth_scopes),
    )


class _GuardedGateway:
    """Gateway proxy that refreshes the access token and re-issues a single rejected call.

    Calls that succeeded before the 401 are never sent again. At most one
    refresh happens per :meth:`TokenGuard.run`.
    """

    def __init__(self, guard: TokenGuard, user: models.User, credentials: Any, gateway: SheetsGateway) -> None:
        self._guard = guard
        self._user = user
        self._credentials = credentials
        self._gateway = gateway
        self.refreshed = False

    def __getattr__(self, name: str) -> Any:
        target = getattr(self._gateway, name)
        if name.startswith("_") or not callable(target):
            return target

        def call(*args: Any, **kwargs: Any) -> Any:
            try:
                return target(*args, **kwargs)
            except CredentialsExpiredError as exc:
                if self.refreshed:
                    LOG.warning("Access token rejected again after refresh for user %s", self._user.id)
                    raise ReauthenticationRequiredError() from exc
                LOG.info("Access token rejected for user %s during %s; refreshing", self._user.id, name)
                self._guard.refresh(self._user, self._credentials)
                self.refreshed = True
            try:
                return target(*args, **kwargs)
            except CredentialsExpiredError as exc:
                LOG.warning("Access token rejected again after refresh for user %s", self._user.id)
                raise ReauthenticationRequiredError() from exc

        return call


class TokenGuard:
    """Run an operation against Google, refreshing the access token at most once.

    The operation receives a :class:`~sheetledger.sheets.SheetsGateway`. When
    Google answers 401 to one of its calls the refresh token is exchanged for
    a new access token, the new tokens are stored on the user row and that
    call alone is sent again. The operation itself runs exactly once. A
    missing refresh token or a rejected refresh raise
    :class:`~sheetledger.errors.ReauthenticationRequiredError`, as does any
    401 after the refresh.
    """

    def __init__(
        self,
        session: Session,
        settings: Settings,
        *,
        gateway_factory: GatewayFactory = build_gateway,
        credentials_factory: CredentialsFactory = build_credentials,
        request_factory: Callable[[], Any] = google.auth.transport.requests.Request,
    ) -> None:
        self.session = session
        self.settings = settings
        self._gateway_factory = gateway_factory
        self._credentials_factory = credentials_factory
        self._request_factory = request_factory

    def run(self, user: models.User, operation: Callable[[SheetsGateway], T]) -> T:
        if not user.access_token and not user.refresh_token:
            raise ReauthenticationRequiredError("No Google credentials on file. Please sign in again.")

        credentials = self._credentials_factory(user, self.settings)
        gateway = self._gateway_factory(credentials)
        try:
            result = operation(_GuardedGateway(self, user, credentials, gateway))
        except CredentialsExpiredError as exc:
            raise ReauthenticationRequiredError() from exc
        finally:
            close = getattr(gateway, "close", None)
            if callable(close):
                close()
        self._persist_rotation(user, credentials)
        return result

    def refresh(self, user: models.User, credentials: Any) -> None:
        """Exchange the refresh token and persist the new token pair."""

        if not getattr(credentials, "refresh_token", None):
            raise ReauthenticationRequiredError("No refresh token on file. Please sign in again.")
        try:
            credentials.refresh(self._request_factory())
        except google.auth.exceptions.RefreshError as exc:
            LOG.warning("Token refresh rejected for user %s: %s", user.id, exc)
            raise ReauthenticationRequiredError() from exc
        # Google does not always rotate the refresh token; keep the stored one then.
        crud.update_user_tokens(self.session, user, credentials.token, credentials.refresh_token)
        LOG.debug("Stored refreshed access token for user %s", user.id)

    def _persist_rotation(self, user: models.User, credentials: Any) -> None:
        """Store tokens the transport refreshed on its own during a call."""

        token = getattr(credentials, "token", None)
        refresh_token = getattr(credentials, "refresh_token", None)
        if not token:
            return
        if token != user.access_token or (refresh_token and refresh_token != user.refresh_token):
            crud.update_user_tokens(self.session, user, token, refresh_token)


__all__ = ["TokenGuard", "build_credentials"]
