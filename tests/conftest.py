from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.x509.oid import NameOID
from lxml import etree

from nfse.models.draft import Dps, Service, TaxDetail
from nfse.models.enums import Environment
from nfse.models.parties import Address, Provider, Recipient
from nfse.models.taxpayer import Cnpj, Cpf
from nfse.utils.certificate import CertificateHandle
from nfse.utils.xml_utils import NS

PFX_PASSWORD = "testpass"
PROVIDER_CNPJ = "11222333000181"
RECIPIENT_CPF = "11144477735"
ACCESS_KEY = "4205407" + PROVIDER_CNPJ + "0" * 28 + "1"
OTHER_KEY = "4205407" + PROVIDER_CNPJ + "0" * 28 + "2"
DPS_ID = "DPS420540721122233300018100900000000000000003"

NFSE_XML = (
    '<NFSe xmlns="http://www.sped.fazenda.gov.br/nfse" versao="1.00">'
    f'<infNFSe Id="NFS{ACCESS_KEY}">'
    "<nNFSe>7</nNFSe>"
    "<dhProc>2025-12-30T16:00:00-03:00</dhProc>"
    f'<DPS versao="1.00"><infDPS Id="{DPS_ID}">'
    "<tpAmb>2</tpAmb>"
    f"<subst><chSubstda>{OTHER_KEY}</chSubstda><cMotivo>99</cMotivo></subst>"
    "</infDPS></DPS>"
    "</infNFSe></NFSe>"
).encode()


def event_xml(code: int, actor: str, seq: int = 1) -> bytes:
    """A registered event as the authority returns it."""
    return (
        '<pedRegEvento xmlns="http://www.sped.fazenda.gov.br/nfse" versao="1.00">'
        f'<infPedReg Id="PRE{ACCESS_KEY}{code}{seq:03d}">'
        "<tpAmb>2</tpAmb>"
        "<dhEvento>2026-01-05T10:00:00-03:00</dhEvento>"
        f"<chNFSe>{ACCESS_KEY}</chNFSe>"
        f"<nPedRegEvento>{seq}</nPedRegEvento>"
        f"<e{code}><xDesc>Manifestacao</xDesc><tpAutor>{actor}</tpAutor>"
        "<xMotivo>Servico nao contratado</xMotivo></e" + str(code) + ">"
        "</infPedReg></pedRegEvento>"
    ).encode()


def xml_text(el: etree._Element, xpath: str) -> str | None:
    """Extract text from an XML element by xpath (``n:`` = NFS-e namespace)."""
    found = el.find(xpath, namespaces=NS)
    return found.text if found is not None else None


def make_pfx(key, cert, password: str = PFX_PASSWORD) -> bytes:
    return pkcs12.serialize_key_and_certificates(
        name=b"test",
        key=key,
        cert=cert,
        cas=None,
        encryption_algorithm=serialization.BestAvailableEncryption(password.encode()),
    )


def make_cert(key, common_name: str, not_before: datetime, not_after: datetime):
    subject = issuer = x509.Name(
        [
            x509.NameAttribute(NameOID.COMMON_NAME, common_name),
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, "ICP-Brasil"),
        ]
    )
    return (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before)
        .not_valid_after(not_after)
        .sign(key, hashes.SHA256())
    )


# --- Certificate / PFX fixtures ---


@pytest.fixture(scope="session")
def rsa_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def test_key_and_cert(rsa_key):
    now = datetime.now(UTC)
    cert = make_cert(
        rsa_key, f"ACME LTDA:{PROVIDER_CNPJ}", now - timedelta(days=1), now + timedelta(days=365)
    )
    return rsa_key, cert


@pytest.fixture(scope="session")
def pfx_bytes(test_key_and_cert) -> bytes:
    key, cert = test_key_and_cert
    return make_pfx(key, cert)


@pytest.fixture
def test_pfx(tmp_path, pfx_bytes):
    pfx_path = tmp_path / "test.pfx"
    pfx_path.write_bytes(pfx_bytes)
    return str(pfx_path), PFX_PASSWORD


@pytest.fixture
def certificate(pfx_bytes) -> CertificateHandle:
    return CertificateHandle.load(pfx_bytes, PFX_PASSWORD)


@pytest.fixture(scope="session")
def expired_pfx(rsa_key) -> bytes:
    now = datetime.now(UTC)
    cert = make_cert(
        rsa_key, f"ACME LTDA:{PROVIDER_CNPJ}", now - timedelta(days=400), now - timedelta(days=1)
    )
    return make_pfx(rsa_key, cert)


@pytest.fixture
def expired_certificate(expired_pfx) -> CertificateHandle:
    return CertificateHandle.load(expired_pfx, PFX_PASSWORD)


# --- Party fixtures ---


@pytest.fixture
def provider() -> Provider:
    return Provider(
        taxpayer_id=Cnpj(PROVIDER_CNPJ),
        razao_social="ACME SOFTWARE LTDA",
        inscricao_municipal="123456",
        fone="48999999999",
        email="contato@acme-software.com.br",
        endereco=Address(
            logradouro="RUA DAS FLORES",
            numero="100",
            bairro="CENTRO",
            cod_municipio="4205407",
            cep="88000000",
        ),
    )


@pytest.fixture
def recipient() -> Recipient:
    return Recipient(
        nome="FULANO DE TAL",
        taxpayer_id=Cpf("111.444.777-35"),
        email="fulano@example.com",
    )


@pytest.fixture
def foreign_recipient() -> Recipient:
    return Recipient(
        nome="Acme Corp",
        nif="123456789",
        endereco=Address(
            logradouro="100 Main St",
            numero="100",
            bairro="n/a",
            pais="US",
            cod_postal="10001",
            cidade="New York",
            estado="NY",
        ),
    )


# --- Draft fixtures ---


@pytest.fixture
def service() -> Service:
    return Service(
        c_trib_nac="010101",
        x_desc_serv="Desenvolvimento de software sob encomenda",
        c_loc_prestacao="4205407",
        c_nbs="115022000",
    )


@pytest.fixture
def taxes() -> TaxDetail:
    return TaxDetail(v_serv="1500.00", p_aliq="2.00")


@pytest.fixture
def draft(provider, recipient, service, taxes) -> Dps:
    return Dps(
        provider=provider,
        recipient=recipient,
        service=service,
        taxes=taxes,
        serie="900",
        n_dps=3,
        competencia="2025-12-30",
        dh_emi="2025-12-30T15:57:03-03:00",
        c_loc_emi="4205407",
        environment=Environment.HOMOLOGACAO,
    )
