from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from nfse.models.enums import ProcessingStatus
from nfse.services import adn_client
from nfse.services.exceptions import AuthorityRejected, ConnectionFailed
from nfse.services.transport import AuthorityTransport
from nfse.utils.compression import compress_and_encode
from tests.conftest import ACCESS_KEY, PROVIDER_CNPJ

SUMMARY_XML = b"""\
<NFSe xmlns="http://www.sped.fazenda.gov.br/nfse">
  <infNFSe><nNFSe>1</nNFSe>
    <emit><CNPJ>11111111000100</CNPJ><xNome>Emitter</xNome></emit>
    <valores><vLiq>1000.00</vLiq></valores>
    <DPS><infDPS><dCompet>2025-12-30</dCompet>
      <toma><CPF>22222222222</CPF><xNome>Taker</xNome></toma>
    </infDPS></DPS>
  </infNFSe>
</NFSe>
"""


def _page(*nsus: int, max_nsu: int | None = None) -> dict:
    data: dict = {
        "StatusProcessamento": "DOCUMENTOS_LOCALIZADOS" if nsus else "NENHUM_DOCUMENTO_LOCALIZADO",
        "LoteDFe": [
            {
                "NSU": nsu,
                "ChaveAcesso": ACCESS_KEY,
                "TipoDocumento": "NFSE",
                "ArquivoXml": compress_and_encode(SUMMARY_XML),
            }
            for nsu in nsus
        ],
    }
    if max_nsu is not None:
        data["MaxNSU"] = max_nsu
    return data


@pytest.fixture
def transport():
    return MagicMock(spec=AuthorityTransport)


@pytest.fixture(autouse=True)
def no_backoff():
    with patch("nfse.services.http_retry.calc_delay", return_value=0.0):
        yield


class TestFetchPage:
    def test_request(self, transport):
        transport.send.return_value = _page(6, 7)
        page = adn_client.fetch_page(transport, 5, issuer_id=PROVIDER_CNPJ)

        args, kwargs = transport.send.call_args
        assert args == ("GET", "adn", "contribuintes/DFe/5")
        assert kwargs["params"] == {"lote": "true", "cnpjConsulta": PROVIDER_CNPJ}
        assert kwargs["allow_not_found"] is True
        assert [item.nsu for item in page.items] == [6, 7]
        assert page.cursor == 5

    def test_single_document_mode(self, transport):
        transport.send.return_value = _page()
        adn_client.fetch_page(transport, 0, batch=False)
        assert transport.send.call_args[1]["params"] == {"lote": "false"}

    def test_nothing_new(self, transport):
        transport.send.return_value = {"StatusProcessamento": "NENHUM_DOCUMENTO_LOCALIZADO"}
        page = adn_client.fetch_page(transport, 40)
        assert page.status is ProcessingStatus.NENHUM_DOCUMENTO_LOCALIZADO
        assert page.next_cursor == 40
        assert not page.has_more

    def test_non_dict_body(self, transport):
        transport.send.return_value = []
        assert adn_client.fetch_page(transport, 0).items == ()

    def test_negative_nsu(self, transport):
        with pytest.raises(ValueError, match="NSU"):
            adn_client.fetch_page(transport, -1)
        transport.send.assert_not_called()

    def test_rejection(self, transport):
        transport.send.return_value = {
            "StatusProcessamento": "REJEICAO",
            "Erros": [{"Codigo": "E1235", "Descricao": "CNPJ nao autorizado"}],
        }
        with pytest.raises(AuthorityRejected, match="E1235"):
            adn_client.fetch_page(transport, 0)

    def test_read_is_retried(self, transport):
        transport.send.side_effect = [ConnectionFailed("reset"), _page(1)]
        assert len(adn_client.fetch_page(transport, 0).items) == 1
        assert transport.send.call_count == 2


class TestIterDocuments:
    def test_paginates_until_head(self, transport):
        transport.send.side_effect = [_page(1, 2, max_nsu=3), _page(3, max_nsu=3)]
        items = list(adn_client.iter_documents(transport))
        assert [i.nsu for i in items] == [1, 2, 3]
        paths = [c[0][2] for c in transport.send.call_args_list]
        assert paths == ["contribuintes/DFe/0", "contribuintes/DFe/2"]

    def test_stops_on_empty_page(self, transport):
        transport.send.side_effect = [_page(1, 2), _page()]
        items = list(adn_client.iter_documents(transport))
        assert [i.nsu for i in items] == [1, 2]
        assert transport.send.call_count == 2

    def test_stops_without_progress(self, transport):
        transport.send.return_value = _page(3)
        items = list(adn_client.iter_documents(transport, 5))
        assert [i.nsu for i in items] == [3]
        assert transport.send.call_count == 1

    def test_is_lazy(self, transport):
        transport.send.return_value = _page(1, max_nsu=10)
        iterator = adn_client.iter_documents(transport)
        transport.send.assert_not_called()
        assert next(iterator).nsu == 1


class TestSummarize:
    def test_fields(self):
        summary = adn_client.summarize_nfse_xml(SUMMARY_XML)
        assert summary == {
            "emit_cnpj": "11111111000100",
            "emit_nome": "Emitter",
            "toma_cnpj": "22222222222",
            "toma_nome": "Taker",
            "n_nfse": "1",
            "competencia": "2025-12-30",
            "valor": "1000.00",
        }

    def test_malformed(self):
        with pytest.raises(ValueError, match="XML mal formado"):
            adn_client.summarize_nfse_xml(b"<NFSe>")


class TestConnectivity:
    def test_fetches_nsu_zero(self, transport):
        transport.send.return_value = {}
        adn_client.check_adn_connectivity(transport, timeout=5)
        args, kwargs = transport.send.call_args
        assert args[2] == "contribuintes/DFe/0"
        assert kwargs["timeout"] == 5

    def test_failure(self, transport):
        transport.send.side_effect = ConnectionFailed("refused")
        with pytest.raises(ConnectionFailed):
            adn_client.check_adn_connectivity(transport)
