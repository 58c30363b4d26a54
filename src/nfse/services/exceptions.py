from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from nfse.models.document import ProcessingMessage
    from nfse.models.enums import NfseStatus
    from nfse.models.lifecycle import LifecycleAction


class NfseError(Exception):
    """Base class for every error raised by the library."""


class InvalidIdentifier(NfseError, ValueError):
    """A CPF/CNPJ failed length, sequence or check-digit validation."""


class ValidationFailed(NfseError):
    """Local, pre-transmission validation failed.

    *errors* maps each violated field to its messages, so callers can
    surface every problem at once.
    """

    def __init__(self, errors: Mapping[str, Iterable[str]]) -> None:
        self.errors: dict[str, list[str]] = {k: list(v) for k, v in errors.items()}
        summary = "; ".join(f"{field}: {', '.join(msgs)}" for field, msgs in self.errors.items())
        super().__init__(f"Validação falhou: {summary}")

    @property
    def fields(self) -> list[str]:
        return list(self.errors)


class InvalidTransition(NfseError):
    """The requested lifecycle action is not allowed from the current status."""

    def __init__(
        self,
        status: NfseStatus,
        action: LifecycleAction,
        message: str | None = None,
    ) -> None:
        self.status = status
        self.action = action
        super().__init__(
            message or f"Transição inválida: {action.value} a partir de {status.value}"
        )


class AuthorityRejected(NfseError):
    """The authority processed the request and refused it.

    Carries the authority's messages unmodified. Never retried.
    """

    def __init__(
        self,
        message: str,
        messages: Iterable[ProcessingMessage] = (),
        response: dict | None = None,
    ) -> None:
        super().__init__(message)
        self.messages = tuple(messages)
        self.response = response or {}


class NotFound(AuthorityRejected):
    """Unknown access key, DPS id or draft id."""


class ProtocolError(NfseError):
    """The authority answered with a shape the wire contract does not allow."""

    def __init__(self, message: str, response: dict | None = None) -> None:
        super().__init__(message)
        self.response = response or {}


class TransportFailed(NfseError):
    """Network failure, timeout or temporary unavailability."""

    retryable = True


class ConnectionFailed(TransportFailed):
    """The request never reached the authority; always safe to resend."""


class ResponseTimeout(TransportFailed):
    """No response in time; the authority may or may not have processed it."""


class ServiceUnavailable(TransportFailed):
    """HTTP status codes that are safe to retry (429, 502, 503, 504)."""

    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


class CertificateError(NfseError):
    """The certificate is unreadable, expired or already released."""


class SignatureInvalid(NfseError):
    """Signature verification failed; only raised inside ``verify``."""
