"""
OAuth token refresh clients, one per pull-style source.

Only TokenManager calls these; they never touch the credential store.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional
import logging

import httpx

from app.config import settings
from app.ingestion_engine.core.types import LeadSource, utcnow
from app.ingestion_engine.errors import ProviderAuthError, ProviderError
from app.models import ConnectedAccount
from .base import request_json


logger = logging.getLogger(__name__)

# Token endpoints answer 400 for a revoked or expired grant
OAUTH_AUTH_STATUSES = (400, 401, 403)


@dataclass
class OAuthTokenGrant:
    """Result of a successful refresh. refresh_token is set only if rotated."""
    access_token: str
    expires_at: Optional[datetime]
    refresh_token: Optional[str] = None

    @classmethod
    def from_response(cls, provider: str, data: Dict[str, Any], issued_at: Optional[datetime] = None):
        access_token = data.get("access_token")
        if not access_token:
            raise ProviderError(provider, "token response has no access_token")

        expires_at = None
        expires_in = data.get("expires_in")
        if expires_in not in (None, ""):
            try:
                expires_at = (issued_at or utcnow()) + timedelta(seconds=int(expires_in))
            except (TypeError, ValueError):
                raise ProviderError(provider, f"invalid expires_in: {expires_in!r}")

        return cls(
            access_token=access_token,
            expires_at=expires_at,
            refresh_token=data.get("refresh_token") or None,
        )


class OAuthProvider(ABC):
    """Refreshes the access token of one connected account."""

    source: LeadSource

    def __init__(
        self,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout if timeout is not None else settings.PROVIDER_HTTP_TIMEOUT_SECONDS
        self.transport = transport

    @abstractmethod
    async def refresh(self, account: ConnectedAccount) -> OAuthTokenGrant:
        """
        Exchange the account's stored grant for a new access token.

        Raises:
            ProviderAuthError: grant revoked, expired or rejected
            ProviderUnavailableError: network failure, timeout, 5xx
        """
        pass

    async def _token_request(self, method: str, url: str, **kwargs) -> OAuthTokenGrant:
        issued_at = utcnow()
        data = await request_json(
            self.source.value, method, url,
            timeout=self.timeout,
            transport=self.transport,
            auth_statuses=OAUTH_AUTH_STATUSES,
            **kwargs,
        )
        return OAuthTokenGrant.from_response(self.source.value, data, issued_at)


class GoogleOAuthProvider(OAuthProvider):
    """refresh_token grant against Google's OAuth token endpoint."""

    source = LeadSource.GOOGLE_ADS

    def __init__(
        self,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        token_url: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.client_id = client_id or settings.GOOGLE_ADS_CLIENT_ID
        self.client_secret = client_secret or settings.GOOGLE_ADS_CLIENT_SECRET
        self.token_url = token_url or settings.GOOGLE_OAUTH_TOKEN_URL

    async def refresh(self, account: ConnectedAccount) -> OAuthTokenGrant:
        if not account.refresh_token:
            raise ProviderAuthError(self.source.value, "account has no refresh token")

        grant = await self._token_request(
            "POST",
            self.token_url,
            data={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "refresh_token": account.refresh_token,
                "grant_type": "refresh_token",
            },
        )
        logger.debug(f"Refreshed Google access token for account {account.id}")
        return grant


class FacebookOAuthProvider(OAuthProvider):
    """
    Long-lived token exchange (fb_exchange_token).

    Facebook has no separate refresh token; the current long-lived access
    token is exchanged for a new one before it expires.
    """

    source = LeadSource.FACEBOOK_ADS

    def __init__(
        self,
        app_id: Optional[str] = None,
        app_secret: Optional[str] = None,
        graph_url: Optional[str] = None,
        graph_version: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.app_id = app_id or settings.FACEBOOK_APP_ID
        self.app_secret = app_secret or settings.FACEBOOK_APP_SECRET
        self.graph_url = (graph_url or settings.FACEBOOK_GRAPH_URL).rstrip("/")
        self.graph_version = graph_version or settings.FACEBOOK_GRAPH_VERSION

    async def refresh(self, account: ConnectedAccount) -> OAuthTokenGrant:
        if not account.access_token:
            raise ProviderAuthError(self.source.value, "account has no token to exchange")

        grant = await self._token_request(
            "GET",
            f"{self.graph_url}/{self.graph_version}/oauth/access_token",
            params={
                "grant_type": "fb_exchange_token",
                "client_id": self.app_id,
                "client_secret": self.app_secret,
                "fb_exchange_token": account.access_token,
            },
        )
        logger.debug(f"Exchanged Facebook token for account {account.id}")
        return grant
