"""mTLS JSON transport shared by the SEFIN and ADN clients.

Every outcome of an HTTP call is translated here into either a decoded JSON
body or one of the library's exceptions, so callers never see ``requests``
errors.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import requests.exceptions
from requests_pkcs12 import delete, get, post, put

from nfse.config import ADN_TIMEOUT, ENDPOINTS, SEFIN_TIMEOUT
from nfse.models.enums import Environment
from nfse.services import responses
from nfse.services.exceptions import (
    ConnectionFailed,
    ProtocolError,
    ResponseTimeout,
    ServiceUnavailable,
)
from nfse.services.http_retry import RETRYABLE_STATUS_CODES
from nfse.utils.certificate import CertificateHandle

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthorityTransport:
    certificate: CertificateHandle
    environment: Environment = Environment.HOMOLOGACAO
    sefin_timeout: float = SEFIN_TIMEOUT
    adn_timeout: float = ADN_TIMEOUT
    endpoints: Mapping[str, str] = field(default_factory=dict)

    def base_url(self, service: str) -> str:
        return (self.endpoints.get(service) or ENDPOINTS[self.environment.value][service]).rstrip("/")

    def url(self, service: str, path: str) -> str:
        base = self.base_url(service)
        return f"{base}/{path.lstrip('/')}" if path else base

    def default_timeout(self, service: str) -> float:
        return self.sefin_timeout if service == "sefin" else self.adn_timeout

    def _request(
        self,
        method: str,
        url: str,
        timeout: float,
        json: Any = None,
        params: Mapping[str, str] | None = None,
    ) -> requests.Response:
        kwargs: dict[str, Any] = {
            "pkcs12_data": self.certificate.pfx_data,
            "pkcs12_password": self.certificate.password,
            "timeout": timeout,
        }
        if json is not None:
            kwargs["json"] = json
        if params:
            kwargs["params"] = dict(params)

        request_func = {"GET": get, "POST": post, "PUT": put, "DELETE": delete}[method]
        logger.debug("%s %s", method, url)
        # ConnectTimeout is also a Timeout, but nothing was sent yet
        try:
            return request_func(url, **kwargs)
        except requests.exceptions.ConnectTimeout as exc:
            raise ConnectionFailed(f"Tempo de conexao esgotado: {url}") from exc
        except requests.exceptions.Timeout as exc:
            raise ResponseTimeout(f"Sem resposta em {timeout:.0f}s: {method} {url}") from exc
        except requests.exceptions.ConnectionError as exc:
            raise ConnectionFailed(f"Falha de conexao com {url}: {exc}") from exc

    def send(
        self,
        method: str,
        service: str,
        path: str,
        *,
        json: Any = None,
        params: Mapping[str, str] | None = None,
        timeout: float | None = None,
        allow_not_found: bool = False,
        action: str = "",
    ) -> Any:
        """Perform one request and return the decoded JSON body.

        An empty body decodes to ``{}``. With *allow_not_found* a 404 is
        returned like any other body instead of raising ``NotFound``.
        """
        url = self.url(service, path)
        resp = self._request(method, url, timeout or self.default_timeout(service), json, params)
        action = action or f"{method} {path}"

        if resp.status_code in RETRYABLE_STATUS_CODES:
            raise ServiceUnavailable(
                f"Servico indisponivel ({resp.status_code}) em {action}", resp.status_code
            )

        data = _decode(resp, action)
        if resp.ok or (allow_not_found and resp.status_code == 404):
            return data
        responses.raise_for_http_error(data if isinstance(data, dict) else {}, resp.status_code, action)

    def ping(self, service: str, *, timeout: float | None = None) -> int:
        """GET the service base URL; any HTTP answer proves mTLS reachability.

        Returns the status code. Raises only ``TransportFailed``.
        """
        url = self.base_url(service)
        resp = self._request("GET", url, timeout or self.default_timeout(service))
        if resp.status_code in RETRYABLE_STATUS_CODES:
            raise ServiceUnavailable(f"Servico indisponivel ({resp.status_code})", resp.status_code)
        return resp.status_code


def _decode(resp: requests.Response, action: str) -> Any:
    if not resp.content or not resp.content.strip():
        return {}
    try:
        return resp.json()
    except ValueError:
        body = resp.text[:500] if resp.text else ""
        raise ProtocolError(
            f"Resposta nao-JSON em {action} ({resp.status_code}): {body}"
        ) from None
