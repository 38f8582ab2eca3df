"""OAuth2 token endpoints for HubSpot, Salesforce and Pipedrive.

Provides the authorization-code exchange (used once by the surrounding
application's callback handler), the refresh-token exchange (used by the
CredentialManager whenever a stored token has expired) and the consent URL
builder.

Provider quirks handled here:
- Salesforce does not rotate refresh tokens and returns no ``expires_in``;
  the previous refresh token is kept and a 2 hour lifetime assumed.
- Salesforce returns ``instance_url``; Pipedrive returns ``api_domain``.
  Both are kept from the previous credentials when a refresh omits them.
- Pipedrive authenticates the client with HTTP Basic instead of form fields.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx
import structlog

from src.crm_sync.config import Settings, get_settings
from src.crm_sync.crm.errors import OAuthConfigError, RefreshFailedError, RemoteAPIError
from src.crm_sync.crm.schemas import CRMProvider, OAuthTokens

logger = structlog.get_logger(__name__)

SALESFORCE_TOKEN_LIFETIME_SECONDS = 2 * 60 * 60

# Token endpoint statuses meaning the grant itself was rejected
PERMANENT_REFRESH_STATUSES = frozenset({400, 401})


@dataclass(frozen=True)
class OAuthProviderConfig:
    """Static OAuth endpoints and app credentials for one provider."""

    provider: CRMProvider
    token_url: str
    authorize_url: str
    client_id: str
    client_secret: str
    scopes: tuple[str, ...] = field(default_factory=tuple)
    basic_auth: bool = False
    default_expires_in: int | None = None


def get_oauth_config(provider: CRMProvider, settings: Settings | None = None) -> OAuthProviderConfig:
    """Build the OAuth config for a provider from settings.

    Raises:
        OAuthConfigError: If the provider's client id or secret is missing.
    """
    settings = settings or get_settings()
    provider = CRMProvider(provider)

    if provider == CRMProvider.HUBSPOT:
        config = OAuthProviderConfig(
            provider=provider,
            token_url="https://api.hubapi.com/oauth/v1/token",
            authorize_url="https://app.hubspot.com/oauth/authorize",
            client_id=settings.HUBSPOT_CLIENT_ID,
            client_secret=settings.HUBSPOT_CLIENT_SECRET,
            scopes=(
                "crm.objects.contacts.read",
                "crm.objects.contacts.write",
                "crm.objects.deals.read",
                "crm.objects.deals.write",
            ),
        )
    elif provider == CRMProvider.SALESFORCE:
        login_url = settings.SALESFORCE_LOGIN_URL.rstrip("/")
        config = OAuthProviderConfig(
            provider=provider,
            token_url=f"{login_url}/services/oauth2/token",
            authorize_url=f"{login_url}/services/oauth2/authorize",
            client_id=settings.SALESFORCE_CLIENT_ID,
            client_secret=settings.SALESFORCE_CLIENT_SECRET,
            scopes=("api", "refresh_token"),
            default_expires_in=SALESFORCE_TOKEN_LIFETIME_SECONDS,
        )
    else:
        config = OAuthProviderConfig(
            provider=provider,
            token_url="https://oauth.pipedrive.com/oauth/token",
            authorize_url="https://oauth.pipedrive.com/oauth/authorize",
            client_id=settings.PIPEDRIVE_CLIENT_ID,
            client_secret=settings.PIPEDRIVE_CLIENT_SECRET,
            basic_auth=True,
        )

    if not config.client_id or not config.client_secret:
        raise OAuthConfigError(f"{provider.value} OAuth credentials not configured")
    return config


def _tokens_from_response(
    config: OAuthProviderConfig,
    data: dict[str, Any],
    previous: OAuthTokens | None = None,
) -> OAuthTokens:
    """Build OAuthTokens from a token endpoint response."""
    expires_in = data.get("expires_in") or config.default_expires_in
    if expires_in is None:
        raise ValueError(f"{config.provider.value} token response missing expires_in")

    refresh_token = data.get("refresh_token") or (previous.refresh_token if previous else None)
    if not refresh_token:
        raise ValueError(f"{config.provider.value} token response missing refresh_token")

    tokens = OAuthTokens(
        access_token=data["access_token"],
        refresh_token=refresh_token,
        expires_at=datetime.now(timezone.utc) + timedelta(seconds=int(expires_in)),
    )
    if config.provider == CRMProvider.SALESFORCE:
        tokens.instance_url = data.get("instance_url") or (previous.instance_url if previous else None)
    elif config.provider == CRMProvider.PIPEDRIVE:
        tokens.api_domain = data.get("api_domain") or (previous.api_domain if previous else None)
    return tokens


class OAuthClient:
    """Performs token requests against the providers' OAuth endpoints.

    Args:
        settings: Application settings (defaults to get_settings()).
        transport: Optional httpx transport override for tests.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._transport = transport

    async def _post_token(self, config: OAuthProviderConfig, form: dict[str, str]) -> dict[str, Any]:
        auth: tuple[str, str] | None = None
        if config.basic_auth:
            auth = (config.client_id, config.client_secret)
        else:
            form = {**form, "client_id": config.client_id, "client_secret": config.client_secret}

        async with httpx.AsyncClient(
            timeout=self._settings.CRM_HTTP_TIMEOUT,
            transport=self._transport,
        ) as client:
            response = await client.post(
                config.token_url,
                data=form,
                auth=auth,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )

        if response.is_error:
            raise RemoteAPIError(config.provider.value, response.status_code, response.text)
        return response.json()

    async def exchange_code(
        self, provider: CRMProvider, code: str, redirect_uri: str
    ) -> OAuthTokens:
        """Exchange an authorization code for tokens.

        Raises:
            OAuthConfigError: If the provider is not configured.
            RemoteAPIError: If the token endpoint rejects the code.
        """
        config = get_oauth_config(provider, self._settings)
        data = await self._post_token(
            config,
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri,
            },
        )
        tokens = _tokens_from_response(config, data)
        logger.info("oauth.code_exchanged", provider=config.provider.value)
        return tokens

    async def refresh(self, provider: CRMProvider, tokens: OAuthTokens) -> OAuthTokens:
        """Exchange a refresh token for a fresh access token.

        Raises:
            RefreshFailedError: On any failure; ``permanent`` is set when the
                provider rejected the grant (HTTP 400/401).
        """
        provider = CRMProvider(provider)
        try:
            config = get_oauth_config(provider, self._settings)
            data = await self._post_token(
                config,
                {
                    "grant_type": "refresh_token",
                    "refresh_token": tokens.refresh_token,
                },
            )
            refreshed = _tokens_from_response(config, data, previous=tokens)
        except RemoteAPIError as exc:
            raise RefreshFailedError(
                provider.value,
                str(exc),
                permanent=exc.status_code in PERMANENT_REFRESH_STATUSES,
            ) from exc
        except (OAuthConfigError, httpx.HTTPError, KeyError, ValueError) as exc:
            raise RefreshFailedError(provider.value, str(exc) or type(exc).__name__) from exc

        logger.info(
            "oauth.token_refreshed",
            provider=provider.value,
            expires_at=refreshed.expires_at.isoformat(),
        )
        return refreshed

    def build_authorize_url(self, provider: CRMProvider, redirect_uri: str, state: str) -> str:
        """Build the provider consent URL the user is redirected to."""
        config = get_oauth_config(provider, self._settings)
        params: dict[str, str] = {
            "client_id": config.client_id,
            "redirect_uri": redirect_uri,
            "state": state,
        }
        if config.provider == CRMProvider.SALESFORCE:
            params["response_type"] = "code"
        if config.scopes:
            params["scope"] = " ".join(config.scopes)
        return str(httpx.URL(config.authorize_url, params=params))
