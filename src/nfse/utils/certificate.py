"""A1 (PKCS#12) certificate handle used for mTLS and XML signing."""

from __future__ import annotations

import logging
import re
from datetime import UTC, datetime
from pathlib import Path

from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
    pkcs12,
)
from cryptography.x509 import Certificate
from cryptography.x509.oid import NameOID

from nfse.models.taxpayer import TaxpayerId, parse_taxpayer_id
from nfse.services.exceptions import CertificateError, InvalidIdentifier

logger = logging.getLogger(__name__)

_ID_SUFFIX = re.compile(r":(\d{11}|\d{14})$")


class CertificateHandle:
    """Holds a decoded .pfx: private key, certificate and CA chain.

    The raw PKCS#12 bytes and password stay available for the mTLS transport
    until ``close()`` is called; after that every key accessor raises
    ``CertificateError``.
    """

    def __init__(
        self,
        pfx_data: bytes,
        password: str,
        key_pem: bytes,
        certificate: Certificate,
        chain: list[Certificate],
    ) -> None:
        self._pfx_data: bytes | None = pfx_data
        self._password: str | None = password
        self._key_pem: bytes | None = key_pem
        self.certificate = certificate
        self.chain = chain

    @classmethod
    def load(cls, pfx_data: bytes, password: str) -> CertificateHandle:
        try:
            private_key, certificate, chain = pkcs12.load_key_and_certificates(
                pfx_data, password.encode()
            )
        except ValueError as exc:
            raise CertificateError(f"Nao foi possivel abrir o certificado: {exc}") from exc

        if private_key is None or certificate is None:
            raise CertificateError("Certificado ou chave privada ausente no arquivo .pfx")

        key_pem = private_key.private_bytes(
            encoding=Encoding.PEM,
            format=PrivateFormat.TraditionalOpenSSL,
            encryption_algorithm=NoEncryption(),
        )
        handle = cls(pfx_data, password, key_pem, certificate, list(chain) if chain else [])
        logger.debug("Certificado carregado: %s", certificate.subject.rfc4514_string())
        return handle

    @classmethod
    def from_file(cls, pfx_path: str | Path, password: str) -> CertificateHandle:
        try:
            pfx_data = Path(pfx_path).read_bytes()
        except OSError as exc:
            raise CertificateError(f"Nao foi possivel ler {pfx_path}: {exc}") from exc
        return cls.load(pfx_data, password)

    # --- lifetime ---

    @property
    def closed(self) -> bool:
        return self._key_pem is None

    def close(self) -> None:
        self._pfx_data = None
        self._password = None
        self._key_pem = None

    def __enter__(self) -> CertificateHandle:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _require_open(self) -> None:
        if self.closed:
            raise CertificateError("Certificado ja foi liberado (close)")

    # --- material ---

    @property
    def key_pem(self) -> bytes:
        self._require_open()
        return self._key_pem  # type: ignore[return-value]

    @property
    def cert_pem(self) -> bytes:
        self._require_open()
        return self.certificate.public_bytes(Encoding.PEM)

    @property
    def pfx_data(self) -> bytes:
        self._require_open()
        return self._pfx_data  # type: ignore[return-value]

    @property
    def password(self) -> str:
        self._require_open()
        return self._password  # type: ignore[return-value]

    # --- inspection ---

    def expiration_date(self) -> datetime:
        return self.certificate.not_valid_after_utc

    def is_valid(self, at: datetime | None = None) -> bool:
        """True when *at* (default: now) falls inside the validity window.

        A naive *at* is taken as UTC.
        """
        now = at or datetime.now(UTC)
        if now.tzinfo is None:
            now = now.replace(tzinfo=UTC)
        cert = self.certificate
        return cert.not_valid_before_utc <= now <= cert.not_valid_after_utc

    def subject_taxpayer_id(self) -> TaxpayerId | None:
        """CPF/CNPJ from the ICP-Brasil subject, or None when it carries neither.

        Looks at the ``CN=NAME:DIGITS`` suffix first, then ``serialNumber``.
        """
        subject = self.certificate.subject
        candidates: list[str] = []
        for attr in subject.get_attributes_for_oid(NameOID.COMMON_NAME):
            match = _ID_SUFFIX.search(str(attr.value))
            if match:
                candidates.append(match.group(1))
        for attr in subject.get_attributes_for_oid(NameOID.SERIAL_NUMBER):
            candidates.append(str(attr.value))

        for raw in candidates:
            try:
                return parse_taxpayer_id(raw)
            except InvalidIdentifier:
                logger.debug("Identificador ignorado no certificado: %s", raw)
        return None

    def describe(self) -> dict:
        cert = self.certificate
        taxpayer = self.subject_taxpayer_id()
        return {
            "subject": cert.subject.rfc4514_string(),
            "issuer": cert.issuer.rfc4514_string(),
            "not_before": cert.not_valid_before_utc,
            "not_after": cert.not_valid_after_utc,
            "valid": self.is_valid(),
            "serial": cert.serial_number,
            "taxpayer_id": taxpayer.digits if taxpayer else None,
        }
