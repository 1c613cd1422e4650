"""
OpenID provider communication.

This module holds the two capabilities the relying-party core depends on:

- ``MetadataResolver``: resolves and caches the provider discovery document
- ``OAuthClient``: performs token endpoint grants and token revocation

Both are protocols so the flow and the session gate can be exercised with
fakes. ``DiscoveryResolver`` and ``OIDCClient`` are the httpx-backed
implementations used by the running service.
"""

import base64
import logging
import time
from typing import Any, Callable, Dict, Optional, Protocol, Type
from urllib.parse import quote_plus

import httpx
from pydantic import ValidationError

from oidc_rp.errors import (
    CodeExchangeError,
    DiscoveryError,
    RefreshGrantError,
    TokenExchangeError,
)
from oidc_rp.models import ClientConfig, ProviderMetadata, TokenResult

logger = logging.getLogger(__name__)


# =============================================================================
# Capabilities
# =============================================================================

class MetadataResolver(Protocol):
    """Supplies the provider metadata for the configured issuer."""

    async def get_metadata(self) -> ProviderMetadata: ...


class OAuthClient(Protocol):
    """Token endpoint operations used by the callback and the session gate."""

    async def exchange_code(
        self,
        metadata: ProviderMetadata,
        client: ClientConfig,
        *,
        code: str,
        redirect_uri: str,
        code_verifier: str,
    ) -> TokenResult: ...

    async def refresh(
        self,
        metadata: ProviderMetadata,
        client: ClientConfig,
        refresh_token: str,
    ) -> TokenResult: ...

    async def revoke(
        self,
        metadata: ProviderMetadata,
        client: ClientConfig,
        token: str,
        token_type_hint: str = "refresh_token",
    ) -> bool: ...


# =============================================================================
# Discovery
# =============================================================================

class DiscoveryResolver:
    """
    Fetch and cache ``/.well-known/openid-configuration`` for one issuer.

    The metadata is cached for ``cache_seconds``; a value of 0 disables
    caching. Concurrent first fetches may race; the last one wins.
    """

    def __init__(
        self,
        issuer: str,
        http_client: httpx.AsyncClient,
        *,
        cache_seconds: int = 3600,
        timeout: float = 10.0,
        clock: Callable[[], float] = time.time,
    ):
        self.issuer = issuer
        self._http = http_client
        self._cache_seconds = cache_seconds
        self._timeout = timeout
        self._clock = clock
        self._metadata: Optional[ProviderMetadata] = None
        self._fetched_at: float = 0.0

    @property
    def discovery_url(self) -> str:
        return f"{self.issuer.rstrip('/')}/.well-known/openid-configuration"

    async def get_metadata(self) -> ProviderMetadata:
        """
        Return cached metadata, fetching it when missing or stale.

        Raises:
            DiscoveryError: If the document cannot be fetched or is invalid
        """
        if self._metadata is not None and (self._clock() - self._fetched_at) < self._cache_seconds:
            return self._metadata
        return await self.refresh()

    async def refresh(self) -> ProviderMetadata:
        """Fetch the discovery document unconditionally and replace the cache."""
        url = self.discovery_url
        try:
            response = await self._http.get(
                url,
                headers={"Accept": "application/json"},
                timeout=self._timeout,
            )
        except httpx.HTTPError as e:
            logger.error(f"Discovery request failed: {e}", extra={"url": url})
            raise DiscoveryError(f"Unable to reach the identity provider: {type(e).__name__}") from e

        if response.status_code != 200:
            logger.error(
                "Discovery returned unexpected status",
                extra={"url": url, "status_code": response.status_code},
            )
            raise DiscoveryError(f"Discovery endpoint returned {response.status_code}")

        try:
            document = response.json()
            metadata = ProviderMetadata.model_validate(document)
        except (ValueError, ValidationError) as e:
            raise DiscoveryError("Discovery document is not valid provider metadata") from e

        if metadata.issuer.rstrip("/") != self.issuer.rstrip("/"):
            logger.error(
                "Discovery issuer mismatch",
                extra={"expected": self.issuer, "received": metadata.issuer},
            )
            raise DiscoveryError("Discovery document issuer does not match the configured issuer")

        self._metadata = metadata
        self._fetched_at = self._clock()
        logger.info("Resolved provider metadata", extra={"issuer": metadata.issuer})
        return metadata


# =============================================================================
# Token Endpoint Client
# =============================================================================

class OIDCClient:
    """OAuth2/OIDC token endpoint client over a shared httpx.AsyncClient."""

    def __init__(self, http_client: httpx.AsyncClient, *, timeout: float = 10.0):
        self._http = http_client
        self._timeout = timeout

    async def exchange_code(
        self,
        metadata: ProviderMetadata,
        client: ClientConfig,
        *,
        code: str,
        redirect_uri: str,
        code_verifier: str,
    ) -> TokenResult:
        """
        Exchange an authorization code for tokens.

        Raises:
            CodeExchangeError: On transport errors, error responses or
                authentication challenges
        """
        payload = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
            "code_verifier": code_verifier,
        }
        response = await self._post(metadata.token_endpoint, client, payload, CodeExchangeError)
        result = _process_token_response(response, CodeExchangeError)
        logger.info(
            "Authorization code exchanged",
            extra={
                "has_refresh_token": result.refresh_token is not None,
                "has_id_token": result.id_token is not None,
            },
        )
        return result

    async def refresh(
        self,
        metadata: ProviderMetadata,
        client: ClientConfig,
        refresh_token: str,
    ) -> TokenResult:
        """
        Redeem a refresh token at the token endpoint.

        Raises:
            RefreshGrantError: If the grant is rejected or the call fails
        """
        payload = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        }
        response = await self._post(metadata.token_endpoint, client, payload, RefreshGrantError)
        result = _process_token_response(response, RefreshGrantError)
        logger.info(
            "Refresh token redeemed",
            extra={"rotated": result.refresh_token is not None},
        )
        return result

    async def revoke(
        self,
        metadata: ProviderMetadata,
        client: ClientConfig,
        token: str,
        token_type_hint: str = "refresh_token",
    ) -> bool:
        """
        Revoke a token at the provider (RFC 7009).

        Returns:
            False when the provider exposes no revocation endpoint, True otherwise

        Raises:
            TokenExchangeError: If the revocation call fails
        """
        if not metadata.revocation_endpoint:
            logger.warning(
                "Provider does not support token revocation",
                extra={"issuer": metadata.issuer},
            )
            return False

        payload = {"token": token, "token_type_hint": token_type_hint}
        response = await self._post(metadata.revocation_endpoint, client, payload, TokenExchangeError)
        # RFC 7009: unknown or already-invalid tokens also answer 200
        if response.status_code != 200:
            raise TokenExchangeError(
                f"Revocation endpoint returned {response.status_code}",
                status=response.status_code,
            )
        logger.info("Token revoked at provider")
        return True

    async def _post(
        self,
        url: str,
        client: ClientConfig,
        payload: Dict[str, str],
        error_cls: Type[TokenExchangeError],
    ) -> httpx.Response:
        data = dict(payload)
        headers = {
            "Accept": "application/json",
            "Content-Type": "application/x-www-form-urlencoded",
        }
        if client.token_endpoint_auth_method == "client_secret_basic":
            headers["Authorization"] = _basic_auth_header(client.client_id, client.client_secret)
        else:
            data["client_id"] = client.client_id
            data["client_secret"] = client.client_secret

        try:
            return await self._http.post(url, data=data, headers=headers, timeout=self._timeout)
        except httpx.TimeoutException as e:
            logger.error("Token endpoint request timed out", extra={"url": url})
            raise error_cls("Identity provider did not answer in time") from e
        except httpx.HTTPError as e:
            logger.error(f"Token endpoint request failed: {e}", extra={"url": url})
            raise error_cls(f"Unable to reach the identity provider: {type(e).__name__}") from e


# =============================================================================
# Helpers
# =============================================================================

def _basic_auth_header(client_id: str, client_secret: str) -> str:
    """Build the client_secret_basic header; RFC 6749 2.3.1 form-encodes both parts."""
    raw = f"{quote_plus(client_id)}:{quote_plus(client_secret)}"
    return "Basic " + base64.b64encode(raw.encode("utf-8")).decode("ascii")


def _parse_json(response: httpx.Response) -> Optional[Dict[str, Any]]:
    try:
        body = response.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


def _process_token_response(
    response: httpx.Response,
    error_cls: Type[TokenExchangeError],
) -> TokenResult:
    """
    Validate a token endpoint response and convert it to a TokenResult.

    Authentication challenges are rejections and are not retried.
    """
    challenge = response.headers.get("www-authenticate")
    if response.status_code == 401 and challenge:
        scheme = challenge.split(" ", 1)[0]
        logger.warning("Token endpoint issued an authentication challenge", extra={"scheme": scheme})
        raise error_cls(
            f"Identity provider challenged the client ({scheme})",
            status=response.status_code,
        )

    body = _parse_json(response)

    if response.status_code != 200:
        oauth_error = body.get("error") if body else None
        description = body.get("error_description") if body else None
        logger.warning(
            "Token endpoint returned an error",
            extra={"status_code": response.status_code, "oauth_error": oauth_error},
        )
        raise error_cls(
            f"Token endpoint returned {response.status_code}: {description or oauth_error or 'no error detail'}",
            oauth_error=oauth_error,
            status=response.status_code,
        )

    if body is None:
        raise error_cls("Token endpoint returned a non-JSON body", status=response.status_code)

    if "error" in body:
        raise error_cls(
            f"Token endpoint returned OAuth2 error: {body.get('error_description') or body['error']}",
            oauth_error=body["error"],
            status=response.status_code,
        )

    try:
        return TokenResult.model_validate(body)
    except ValidationError as e:
        raise error_cls("Token endpoint response is missing required fields") from e


__all__ = [
    "MetadataResolver",
    "OAuthClient",
    "DiscoveryResolver",
    "OIDCClient",
]
