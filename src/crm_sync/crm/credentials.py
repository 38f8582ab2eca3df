"""Credential manager -- the only place integration credentials are decrypted.

Resolves a usable OAuthTokens for a (user, provider) pair:

1. Load the connected ``crm_<provider>`` integration.
2. Decrypt and parse the stored blob.
3. If the access token is still valid, return it.
4. Otherwise refresh under a per-(user, provider) asyncio.Lock, re-reading the
   integration first in case another coroutine already refreshed. The new blob
   is written with compare-and-set against the blob that was refreshed; if
   another process won that write, its tokens are used instead.

Refresh failures return None. A permanent failure (the provider rejected the
refresh grant) marks the integration disconnected so later syncs report
"not connected" without hitting the token endpoint again.
"""

from __future__ import annotations

import asyncio
import weakref
from datetime import datetime, timezone
from typing import TYPE_CHECKING

import structlog
from pydantic import ValidationError as PydanticValidationError

from src.crm_sync.config import Settings, get_settings
from src.crm_sync.crm.errors import CredentialDecryptError, RefreshFailedError
from src.crm_sync.crm.oauth import OAuthClient
from src.crm_sync.crm.repository import IntegrationRepository
from src.crm_sync.crm.schemas import (
    CRMProvider,
    Integration,
    IntegrationStatus,
    OAuthTokens,
)

if TYPE_CHECKING:
    from src.crm_sync.core.encryption import CredentialCipher

logger = structlog.get_logger(__name__)


class CredentialManager:
    """Loads, refreshes and persists OAuth credentials per (user, provider).

    Args:
        integrations: Integration repository port.
        cipher: Cipher for the stored credential blobs.
        oauth: OAuth client used for refresh requests.
        settings: Application settings (defaults to get_settings()).
    """

    def __init__(
        self,
        integrations: IntegrationRepository,
        cipher: CredentialCipher,
        oauth: OAuthClient | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._integrations = integrations
        self._cipher = cipher
        self._settings = settings or get_settings()
        self._oauth = oauth or OAuthClient(self._settings)
        self._locks: weakref.WeakValueDictionary[tuple[str, str], asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def _lock_for(self, user_id: str, provider: str) -> asyncio.Lock:
        key = (user_id, provider)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def encode(self, tokens: OAuthTokens) -> str:
        """Serialize and encrypt tokens into a storable blob."""
        return self._cipher.encrypt(tokens.model_dump_json())

    def decode(self, blob: str) -> OAuthTokens:
        """Decrypt and parse a stored blob.

        Raises:
            CredentialDecryptError: If the blob cannot be decrypted or parsed.
        """
        plaintext = self._cipher.decrypt(blob)
        try:
            return OAuthTokens.model_validate_json(plaintext)
        except PydanticValidationError as exc:
            raise CredentialDecryptError("Stored credentials are malformed") from exc

    def _is_fresh(self, tokens: OAuthTokens) -> bool:
        return not tokens.is_expired(
            now=datetime.now(timezone.utc),
            skew_seconds=self._settings.TOKEN_REFRESH_SKEW_SECONDS,
        )

    async def _load(self, user_id: str, provider: CRMProvider) -> tuple[Integration, OAuthTokens] | None:
        integration = await self._integrations.get_integration(
            user_id, provider.integration_type, IntegrationStatus.CONNECTED
        )
        if integration is None or not integration.credentials:
            return None

        try:
            tokens = self.decode(integration.credentials)
        except CredentialDecryptError as exc:
            logger.warning(
                "credentials.decrypt_failed",
                user_id=user_id,
                provider=provider.value,
                error=str(exc),
            )
            return None
        return integration, tokens

    async def get_credentials(self, user_id: str, provider: CRMProvider | str) -> OAuthTokens | None:
        """Return valid tokens for the user's provider integration.

        Returns:
            Fresh OAuthTokens, or None if the provider is not connected, the
            stored blob is unreadable, or the refresh failed.
        """
        provider = CRMProvider(provider)

        loaded = await self._load(user_id, provider)
        if loaded is None:
            return None
        _, tokens = loaded
        if self._is_fresh(tokens):
            return tokens

        async with self._lock_for(user_id, provider.value):
            # Another coroutine may have refreshed while we waited
            loaded = await self._load(user_id, provider)
            if loaded is None:
                return None
            integration, tokens = loaded
            if self._is_fresh(tokens):
                return tokens

            return await self._refresh(integration, provider, tokens)

    async def _refresh(
        self,
        integration: Integration,
        provider: CRMProvider,
        tokens: OAuthTokens,
    ) -> OAuthTokens | None:
        try:
            refreshed = await self._oauth.refresh(provider, tokens)
        except RefreshFailedError as exc:
            logger.warning(
                "credentials.refresh_failed",
                user_id=integration.user_id,
                provider=provider.value,
                permanent=exc.permanent,
                error=str(exc),
            )
            if exc.permanent:
                await self._integrations.mark_status(
                    integration.id, IntegrationStatus.DISCONNECTED, str(exc)
                )
            return None

        won = await self._integrations.update_credentials(
            integration.id,
            self.encode(refreshed),
            expected=integration.credentials,
        )
        if won:
            logger.info(
                "credentials.refreshed",
                user_id=integration.user_id,
                provider=provider.value,
            )
            return refreshed

        # Another process persisted a refresh first; its tokens supersede ours
        logger.info(
            "credentials.refresh_superseded",
            user_id=integration.user_id,
            provider=provider.value,
        )
        loaded = await self._load(integration.user_id, provider)
        if loaded is None:
            return None
        return loaded[1]
