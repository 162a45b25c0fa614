"""Google sign-in: consent URL, code exchange and user info lookup."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import google.oauth2.credentials
import requests
from google_auth_oauthlib.flow import Flow
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from oauthlib.oauth2.rfc6749.errors import OAuth2Error

from . import schemas
from .config import TOKEN_URI, Settings
from .errors import ConfigurationError, UpstreamError

LOG = logging.getLogger(__name__)

AUTH_URI = "https://accounts.google.com/o/oauth2/auth"


@dataclass(frozen=True, slots=True)
class AuthorizationRequest:
    url: str
    state: str
    code_verifier: str | None


@dataclass(frozen=True, slots=True)
class OAuthTokens:
    access_token: str
    refresh_token: str | None
    credentials: Any


class GoogleOAuthClient:
    """Wrap ``google_auth_oauthlib`` for the authorization-code flow."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    def _client_config(self) -> dict[str, Any]:
        return {
            "web": {
                "client_id": self.settings.google_client_id,
                "client_secret": self.settings.google_client_secret,
                "auth_uri": AUTH_URI,
                "token_uri": TOKEN_URI,
                "redirect_uris": [self.settings.google_redirect_uri],
            }
        }

    def _flow(self, *, state: str | None = None, code_verifier: str | None = None) -> Flow:
        if not self.settings.google_client_id or not self.settings.google_client_secret:
            raise ConfigurationError("Google OAuth client is not configured")
        return Flow.from_client_config(
            self._client_config(),
            scopes=list(self.settings.oauth_scopes),
            redirect_uri=self.settings.google_redirect_uri,
            state=state,
            code_verifier=code_verifier,
            autogenerate_code_verifier=code_verifier is None,
        )

    def authorization_url(self) -> AuthorizationRequest:
        flow = self._flow()
        url, state = flow.authorization_url(
            access_type="offline",
            prompt="consent",
            include_granted_scopes="true",
        )
        return AuthorizationRequest(url=url, state=state, code_verifier=flow.code_verifier)

    def exchange_code(self, code: str, *, state: str | None = None, code_verifier: str | None = None) -> OAuthTokens:
        flow = self._flow(state=state, code_verifier=code_verifier)
        try:
            flow.fetch_token(code=code)
        except (OAuth2Error, requests.RequestException, ValueError) as exc:
            LOG.warning("Authorization code exchange failed: %s", exc)
            raise UpstreamError("Something went wrong during authentication. Please try again.") from exc
        credentials = flow.credentials
        if not credentials.token:
            raise UpstreamError("Google did not return an access token")
        return OAuthTokens(
            access_token=credentials.token,
            refresh_token=credentials.refresh_token,
            credentials=credentials,
        )

    def fetch_user_info(self, credentials: google.oauth2.credentials.Credentials) -> schemas.GoogleUserInfo:
        service = build("oauth2", "v2", credentials=credentials, cache_discovery=False)
        try:
            data = service.userinfo().get().execute()
        except HttpError as exc:
            raise UpstreamError(f"Could not read Google profile: {exc}") from exc
        finally:
            service.close()
        return schemas.GoogleUserInfo.model_validate(data)


__all__ = ["AuthorizationRequest", "GoogleOAuthClient", "OAuthTokens"]
