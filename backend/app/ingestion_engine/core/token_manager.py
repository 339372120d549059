"""
Token lifecycle manager for pull-style integrations.

Hands out access tokens that are valid for at least the safety margin,
refreshing through the source's OAuth provider when needed. Refreshes are
serialized per account, so a burst of callers for one expiring account
causes exactly one provider call. Accounts never wait on each other.
"""
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional
import logging

import httpx

from app.config import settings
from app.ingestion_engine.adapters.oauth import OAuthProvider
from app.ingestion_engine.core.keyed_lock import KeyedLock
from app.ingestion_engine.core.types import LeadSource, utcnow
from app.ingestion_engine.errors import (
    ProviderError,
    StorageError,
    StorageReadFailed,
    StorageWriteFailed,
    TokenRefreshFailed,
)
from app.ingestion_engine.stores.base import CredentialStore
from app.models import ConnectedAccount


logger = logging.getLogger(__name__)


class TokenManager:
    """
    Returns currently-valid access tokens for connected accounts.

    A failed refresh marks the account needs_reauth; from then on every call
    fails fast with TokenRefreshFailed until the tenant reconnects. There is
    no automatic retry.
    """

    def __init__(
        self,
        credential_store: CredentialStore,
        providers: Dict[LeadSource, OAuthProvider],
        lock=None,
        refresh_margin_seconds: Optional[int] = None,
    ):
        """
        Initialize token manager.

        Args:
            credential_store: Where accounts and tokens live
            providers: OAuth provider per source
            lock: KeyedLock or RedisKeyedLock (in-process KeyedLock by default)
            refresh_margin_seconds: Tokens expiring sooner than this are refreshed
        """
        self.credential_store = credential_store
        self.providers = providers
        self.lock = lock or KeyedLock()
        margin = refresh_margin_seconds
        if margin is None:
            margin = settings.TOKEN_REFRESH_MARGIN_SECONDS
        self.refresh_margin = timedelta(seconds=margin)

    def is_fresh(self, account: ConnectedAccount, now: Optional[datetime] = None) -> bool:
        """True if the stored token is usable for longer than the margin."""
        if not account.access_token:
            return False
        expires_at = account.token_expires_at
        if expires_at is None:
            # Non-expiring token (e.g. Facebook page tokens)
            return True
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return expires_at - (now or utcnow()) > self.refresh_margin

    async def get_valid_access_token(self, account: ConnectedAccount) -> str:
        """
        Return a valid access token for the account.

        Raises:
            TokenRefreshFailed: account needs reauth, or the refresh failed
            StorageReadFailed: account could not be re-read
            StorageWriteFailed: refreshed token could not be persisted
        """
        if account.needs_reauth:
            raise self._needs_reauth_error(account)

        if self.is_fresh(account):
            return account.access_token

        async with self.lock.acquire(f"token:{account.id}"):
            # Another caller may have refreshed (or failed) while we waited
            try:
                current = await self.credential_store.get_account_by_id(account.id)
            except StorageError as e:
                raise StorageReadFailed(
                    f"Could not load connected account {account.id}",
                    {"account_id": str(account.id), "error": str(e)},
                ) from e

            if current is None:
                raise TokenRefreshFailed(
                    "Connected account was disconnected",
                    {"account_id": str(account.id), "source": account.source},
                )
            if current.needs_reauth:
                raise self._needs_reauth_error(current)
            if self.is_fresh(current):
                return current.access_token

            return await self._refresh(current)

    async def _refresh(self, account: ConnectedAccount) -> str:
        source = LeadSource(account.source)
        details = {"account_id": str(account.id), "source": source.value}

        provider = self.providers.get(source)
        if provider is None:
            await self._mark_needs_reauth(account, f"{source.value} has no token refresh endpoint")
            raise TokenRefreshFailed(f"No token refresh available for {source.value}", details)

        logger.info(f"Refreshing access token for account {account.id} ({source.value})")
        try:
            grant = await provider.refresh(account)
        except (ProviderError, httpx.HTTPError) as e:
            status_code = getattr(e, "status_code", None)
            logger.warning(f"Token refresh failed for account {account.id} ({source.value}): {e}")
            await self._mark_needs_reauth(account, str(e))
            raise TokenRefreshFailed(
                f"Token refresh failed for {source.value} account; reconnect required",
                {**details, "error": str(e), "provider_status": status_code},
            ) from e

        try:
            updated = await self.credential_store.update_tokens(
                account.id,
                grant.access_token,
                grant.refresh_token,
                grant.expires_at,
            )
        except StorageError as e:
            logger.error(f"Could not persist refreshed token for account {account.id}: {e}")
            raise StorageWriteFailed(
                "Refreshed token could not be saved",
                {**details, "error": str(e)},
            ) from e

        logger.info(
            f"Access token refreshed for account {account.id}"
            f"{' (refresh token rotated)' if grant.refresh_token else ''}"
        )
        return updated.access_token

    async def _mark_needs_reauth(self, account: ConnectedAccount, reason: str):
        try:
            await self.credential_store.mark_needs_reauth(account.id, reason)
        except StorageError as e:
            # The refresh failure is still reported; the flag is retried next time
            logger.error(f"Could not mark account {account.id} as needing reauth: {e}")

    @staticmethod
    def _needs_reauth_error(account: ConnectedAccount) -> TokenRefreshFailed:
        return TokenRefreshFailed(
            "Connected account needs to be reconnected",
            {
                "account_id": str(account.id),
                "source": account.source,
                "reauth_reason": account.reauth_reason,
            },
        )
