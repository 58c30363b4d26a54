from __future__ import annotations

from collections.abc import Iterator
from typing import Any

from nfse.models.document import DistributionItem, DistributionPage
from nfse.services import responses
from nfse.services.http_retry import READ, retry_call
from nfse.services.transport import AuthorityTransport
from nfse.utils.xml_utils import find_text, parse_xml


def fetch_page(
    transport: AuthorityTransport,
    nsu: int,
    *,
    issuer_id: str | None = None,
    batch: bool = True,
    timeout: float | None = None,
) -> DistributionPage:
    """Fetch the DF-e documents after *nsu*; 404 means "nothing new", not an error."""
    if nsu < 0:
        raise ValueError(f"NSU deve ser >= 0: {nsu}")
    params = {"lote": "true" if batch else "false"}
    if issuer_id:
        params["cnpjConsulta"] = issuer_id

    data = retry_call(
        lambda: transport.send(
            "GET",
            "adn",
            f"contribuintes/DFe/{nsu}",
            params=params,
            timeout=timeout,
            allow_not_found=True,
            action="distribuicao DF-e",
        ),
        READ,
    )
    return responses.parse_distribution(data if isinstance(data, dict) else {}, nsu)


def iter_documents(
    transport: AuthorityTransport,
    nsu: int = 0,
    *,
    issuer_id: str | None = None,
    timeout: float | None = None,
) -> Iterator[DistributionItem]:
    """Yield every distributed document after *nsu*, paginating automatically.

    Stops at the head of the stream, or when a page makes no progress.
    """
    while True:
        page = fetch_page(transport, nsu, issuer_id=issuer_id, timeout=timeout)
        yield from page.items
        next_nsu = page.next_cursor
        if not page.items or next_nsu <= nsu or not page.has_more:
            return
        nsu = next_nsu


def summarize_nfse_xml(xml: bytes) -> dict[str, Any]:
    """Extract the headline fields of a distributed NFS-e XML."""
    root = parse_xml(xml)
    return {
        "emit_cnpj": find_text(root, ".//n:emit/n:CNPJ") or find_text(root, ".//n:emit/n:CPF"),
        "emit_nome": find_text(root, ".//n:emit/n:xNome"),
        "toma_cnpj": find_text(root, ".//n:toma/n:CNPJ") or find_text(root, ".//n:toma/n:CPF"),
        "toma_nome": find_text(root, ".//n:toma/n:xNome"),
        "n_nfse": find_text(root, ".//n:infNFSe/n:nNFSe"),
        "competencia": find_text(root, ".//n:infDPS/n:dCompet"),
        "valor": find_text(root, ".//n:valores/n:vLiq"),
    }


def check_adn_connectivity(transport: AuthorityTransport, *, timeout: float | None = None) -> None:
    """Test ADN API connectivity by fetching the DF-e page at NSU 0."""
    fetch_page(transport, 0, timeout=timeout)
