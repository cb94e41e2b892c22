from __future__ import annotations

import base64
from typing import Any, Dict, Mapping, Optional, Protocol, TypedDict
from urllib.parse import parse_qsl, quote_plus, urlencode, urlparse, urlunparse

import httpx

from oidc_consumer.config import (
    AuthorizationMethod,
    BodyFormat,
    ClientConfig,
    CredentialsEncoding,
)
from oidc_consumer.logging import get_logger
from oidc_consumer.service.errors import ProviderError, ValidationError
from oidc_consumer.storage.models import TokenKind, TokenRecord

logger = get_logger(__name__)


class TransportOptions(TypedDict, total=False):
    """Per-call transport settings passed through to httpx untouched."""

    timeout: float
    verify: bool | str
    headers: Dict[str, str]


class AuthServerClient(Protocol):
    def build_authorize_url(self, params: Mapping[str, Any]) -> str: ...

    async def exchange_code(
        self, params: Mapping[str, Any], transport_options: Optional[TransportOptions] = None
    ) -> TokenRecord: ...

    async def refresh_token(
        self,
        token: TokenRecord,
        params: Mapping[str, Any],
        transport_options: Optional[TransportOptions] = None,
    ) -> TokenRecord: ...

    async def revoke_token(
        self,
        token: TokenRecord,
        kind: TokenKind,
        transport_options: Optional[TransportOptions] = None,
    ) -> None: ...

    async def revoke_all_tokens(
        self, token: TokenRecord, transport_options: Optional[TransportOptions] = None
    ) -> None: ...


def _add_params(url: str, params: Mapping[str, Any]) -> str:
    parsed = urlparse(url)
    query = dict(parse_qsl(parsed.query, keep_blank_values=True))
    query.update({k: v for k, v in params.items() if v is not None})
    return str(urlunparse(parsed._replace(query=urlencode(query, doseq=True))))


class HttpxAuthServerClient:
    """OAuth2 authorization-code client speaking to the provider over httpx."""

    def __init__(
        self,
        config: ClientConfig,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.config = config
        self._transport = transport

    def _scope_value(self, scope: Any) -> Any:
        if isinstance(scope, (list, tuple, set)):
            return self.config.scope_separator.join(str(s) for s in scope)
        return scope

    def build_authorize_url(self, params: Mapping[str, Any]) -> str:
        query: Dict[str, Any] = {
            "response_type": "code",
            self.config.id_param_name: self.config.id,
        }
        for key, value in params.items():
            query[key] = self._scope_value(value) if key == "scope" else value
        return _add_params(self.config.authorize_endpoint, query)

    def _basic_credentials(self) -> str:
        client_id, secret = self.config.id, self.config.secret
        if self.config.credentials_encoding == CredentialsEncoding.STRICT:
            client_id, secret = quote_plus(client_id), quote_plus(secret)
        raw = f"{client_id}:{secret}".encode("utf-8")
        return "Basic " + base64.b64encode(raw).decode("ascii")

    async def _post(
        self,
        url: str,
        payload: Dict[str, Any],
        transport_options: Optional[TransportOptions],
    ) -> httpx.Response:
        options: Dict[str, Any] = dict(transport_options or {})
        headers = {"Accept": "application/json"}
        headers.update(options.get("headers") or {})
        body = {k: v for k, v in payload.items() if v is not None}
        if self.config.authorization_method == AuthorizationMethod.HEADER:
            headers["Authorization"] = self._basic_credentials()
        else:
            body[self.config.id_param_name] = self.config.id
            body[self.config.secret_param_name] = self.config.secret

        request_kwargs: Dict[str, Any] = {"headers": headers}
        if self.config.body_format == BodyFormat.JSON:
            request_kwargs["json"] = body
        else:
            request_kwargs["data"] = body

        async with httpx.AsyncClient(
            timeout=options.get("timeout", self.config.timeout_seconds),
            verify=options.get("verify", True),
            transport=self._transport,
            follow_redirects=False,
        ) as client:
            response = await client.post(url, **request_kwargs)
            response.raise_for_status()
            return response

    async def _token_request(
        self,
        url: str,
        payload: Dict[str, Any],
        transport_options: Optional[TransportOptions],
    ) -> Dict[str, Any]:
        response = await self._post(url, payload, transport_options)
        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderError(
                "token endpoint returned a non-JSON body",
                detail={"status_code": response.status_code},
            ) from exc
        if not isinstance(data, dict) or not data.get("access_token"):
            detail = {}
            if isinstance(data, dict):
                detail = {k: data[k] for k in ("error", "error_description") if k in data}
            raise ProviderError("token endpoint returned no access token", detail=detail)
        return data

    async def exchange_code(
        self, params: Mapping[str, Any], transport_options: Optional[TransportOptions] = None
    ) -> TokenRecord:
        payload: Dict[str, Any] = {"grant_type": "authorization_code"}
        for key, value in params.items():
            payload[key] = self._scope_value(value) if key == "scope" else value
        data = await self._token_request(self.config.token_endpoint, payload, transport_options)
        logger.info("provider_code_exchanged", token_type=data.get("token_type"))
        return TokenRecord.from_response(data)

    async def refresh_token(
        self,
        token: TokenRecord,
        params: Mapping[str, Any],
        transport_options: Optional[TransportOptions] = None,
    ) -> TokenRecord:
        if not token.refresh_token:
            raise ValidationError("token has no refresh_token to refresh with")
        payload: Dict[str, Any] = {
            "grant_type": "refresh_token",
            "refresh_token": token.refresh_token,
        }
        for key, value in params.items():
            payload[key] = self._scope_value(value) if key == "scope" else value
        data = await self._token_request(self.config.refresh_endpoint, payload, transport_options)
        refreshed = TokenRecord.from_response(data)
        if not refreshed.refresh_token:
            # Providers that do not rotate refresh tokens omit it from the response
            refreshed.refresh_token = token.refresh_token
        logger.info("provider_token_refreshed")
        return refreshed

    async def revoke_token(
        self,
        token: TokenRecord,
        kind: TokenKind,
        transport_options: Optional[TransportOptions] = None,
    ) -> None:
        kind = TokenKind(kind)
        if kind == TokenKind.ALL:
            raise ValidationError("use revoke_all_tokens to revoke every token")
        value = token.access_token if kind == TokenKind.ACCESS else token.refresh_token
        if not value:
            raise ValidationError(f"token has no {kind.value} to revoke")
        await self._post(
            self.config.revoke_endpoint,
            {"token": value, "token_type_hint": kind.value},
            transport_options,
        )
        logger.info("provider_token_revoked", kind=kind.value)

    async def revoke_all_tokens(
        self, token: TokenRecord, transport_options: Optional[TransportOptions] = None
    ) -> None:
        await self.revoke_token(token, TokenKind.ACCESS, transport_options)
        if token.refresh_token:
            await self.revoke_token(token, TokenKind.REFRESH, transport_options)
