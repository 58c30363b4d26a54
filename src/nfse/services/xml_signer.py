from __future__ import annotations

import logging
import textwrap

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.serialization import Encoding
from lxml import etree
from signxml.algorithms import (
    DigestAlgorithm,
    SignatureConstructionMethod,
    SignatureMethod,
)
from signxml.signer import XMLSigner
from signxml.verifier import SignatureConfiguration, XMLVerifier

from nfse.config import DSIG_NS, NFSE_NS
from nfse.services.exceptions import CertificateError, SignatureInvalid
from nfse.utils.certificate import CertificateHandle
from nfse.utils.xml_utils import parse_xml

logger = logging.getLogger(__name__)

C14N_EXC_WITH_COMMENTS = "http://www.w3.org/2001/10/xml-exc-c14n#WithComments"


def _as_element(xml: etree._Element | bytes | str) -> etree._Element:
    if isinstance(xml, (bytes, str)):
        return parse_xml(xml)
    return xml


def _reference_id(root: etree._Element, tag: str) -> str:
    inf = root.find(f"{{{NFSE_NS}}}{tag}")
    if inf is None:
        inf = root.find(tag)
    if inf is None:
        raise ValueError(f"{tag} element not found in {etree.QName(root).localname}")
    ref = inf.get("Id")
    if not ref:
        raise ValueError(f"{tag} is missing Id attribute")
    return ref


def sign(
    xml: etree._Element | bytes | str,
    certificate: CertificateHandle,
    reference_id: str | None = None,
) -> etree._Element:
    """Apply an enveloped RSA-SHA256 signature to *xml*.

    Uses Exclusive XML Canonicalization 1.0 WITH Comments as required by SEFIN.
    With *reference_id* the reference is ``#reference_id``; otherwise the
    whole document is signed. The <Signature> is appended as the last child
    of the root. Returns the signed root element.
    """
    if not certificate.is_valid():
        raise CertificateError(
            "Certificado fora do prazo de validade "
            f"(expira/expirou em {certificate.expiration_date():%Y-%m-%d})"
        )

    signer = XMLSigner(
        method=SignatureConstructionMethod.enveloped,
        signature_algorithm=SignatureMethod.RSA_SHA256,
        digest_algorithm=DigestAlgorithm.SHA256,
        c14n_algorithm=C14N_EXC_WITH_COMMENTS,
    )

    return signer.sign(
        _as_element(xml),
        key=certificate.key_pem,
        cert=certificate.cert_pem.decode(),
        reference_uri=f"#{reference_id}" if reference_id else None,
    )


def sign_dps(dps: etree._Element, certificate: CertificateHandle) -> etree._Element:
    """Sign a <DPS> over its infDPS Id."""
    return sign(dps, certificate, _reference_id(dps, "infDPS"))


def sign_event(event: etree._Element, certificate: CertificateHandle) -> etree._Element:
    """Sign a <pedRegEvento> over its infPedReg Id."""
    return sign(event, certificate, _reference_id(event, "infPedReg"))


def _embedded_cert_pem(root: etree._Element) -> str:
    b64 = root.findtext(f".//{{{DSIG_NS}}}X509Certificate")
    if not b64 or not b64.strip():
        raise SignatureInvalid("Assinatura sem X509Certificate embutido")
    body = "".join(b64.split())
    lines = "\n".join(textwrap.wrap(body, 64))
    return f"-----BEGIN CERTIFICATE-----\n{lines}\n-----END CERTIFICATE-----\n"


def _verify(root: etree._Element, certificate: CertificateHandle | None) -> None:
    if root.find(f".//{{{DSIG_NS}}}Signature") is None:
        raise SignatureInvalid("Documento sem elemento Signature")
    if certificate is not None:
        cert = certificate.certificate
        cert_pem = cert.public_bytes(Encoding.PEM).decode()
    else:
        cert_pem = _embedded_cert_pem(root)
        try:
            cert = x509.load_pem_x509_certificate(cert_pem.encode())
        except ValueError as exc:
            raise SignatureInvalid(f"X509Certificate ilegivel: {exc}") from exc
    # validity window is checked at signing time, not here
    config = SignatureConfiguration(verification_time=cert.not_valid_before_utc)
    # signxml errors derive from InvalidSignature or ValueError (InvalidInput)
    try:
        XMLVerifier().verify(root, x509_cert=cert_pem, expect_config=config)
    except (InvalidSignature, ValueError) as exc:
        raise SignatureInvalid(str(exc)) from exc


def verify(
    signed_xml: etree._Element | bytes | str,
    certificate: CertificateHandle | None = None,
) -> bool:
    """Check digest and signature value of an enveloped signature.

    Uses *certificate* when given, otherwise the X509Certificate embedded in
    the signature. Never raises: malformed or invalid input returns False
    and is logged. Certificate expiry is not checked here.
    """
    try:
        root = _as_element(signed_xml)
        _verify(root, certificate)
    except ValueError as exc:
        logger.warning("Assinatura invalida: XML mal formado (%s)", exc)
        return False
    except SignatureInvalid as exc:
        logger.warning("Assinatura invalida: %s", exc)
        return False
    return True
