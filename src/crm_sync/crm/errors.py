"""CRM sync error taxonomy.

These exceptions are raised inside provider clients, the credential manager
and the OAuth helpers. They never cross the public sync boundary: the
CRMSyncManager and every CRMClient method convert them into
``SyncResult(success=False, error=str(exc))``.
"""

from __future__ import annotations


class CRMError(Exception):
    """Base class for all CRM sync errors."""


class NotConnectedError(CRMError):
    """No connected integration exists for the (user, provider) pair."""

    def __init__(self, provider: str) -> None:
        super().__init__(f"{provider} not connected")
        self.provider = provider


class AuthExpiredError(CRMError):
    """Stored access token has expired and could not be used."""


class RefreshFailedError(AuthExpiredError):
    """Token refresh request did not succeed.

    ``permanent`` is True when the provider rejected the grant itself
    (HTTP 400/401, e.g. a revoked refresh token), as opposed to a network
    error or provider outage.
    """

    def __init__(self, provider: str, detail: str, permanent: bool = False) -> None:
        super().__init__(f"{provider} token refresh failed: {detail}")
        self.provider = provider
        self.permanent = permanent


class RemoteAPIError(CRMError):
    """Provider returned a non-2xx response (or an unsuccessful envelope)."""

    def __init__(self, provider: str, status_code: int, body: str) -> None:
        super().__init__(f"{provider} API error: {status_code} - {body}")
        self.provider = provider
        self.status_code = status_code
        self.body = body


class NotFoundError(CRMError):
    """A lookup returned nothing."""


class ValidationError(CRMError):
    """Local entity is not eligible for sync (e.g. a lead without email)."""


class OAuthConfigError(CRMError):
    """OAuth client id/secret for a provider is not configured."""


class CredentialDecryptError(CRMError):
    """Stored credential blob could not be decrypted or parsed."""
