from __future__ import annotations

from datetime import datetime
from unittest.mock import MagicMock

import pytest
import requests.exceptions

from zemdocs.models.document import Document
from zemdocs.models.nfse import ConsultarXMLRequest, NFSeResponse
from zemdocs.services.exceptions import (
    MunicipalityNotImplementedError,
    SyncError,
    TaxApiError,
    XmlNotFoundError,
)
from zemdocs.services.municipal_client import ClientRegistry, MunicipalClient
from zemdocs.services.nfse_service import NFSeService
from zemdocs.utils.xml_storage import object_key, object_key_with_cnpj


@pytest.fixture
def client() -> MagicMock:
    return MagicMock(spec=MunicipalClient)


@pytest.fixture
def service(client, repository, storage) -> NFSeService:
    registry = ClientRegistry()
    registry.register("2105302", client)
    return NFSeService(registry, repository, storage, sleep_func=lambda _: None)


def _response(numero: str) -> NFSeResponse:
    return NFSeResponse(
        numero_nfse=numero,
        numero_rps="1",
        serie_rps="A1",
        data_emissao=datetime(2024, 8, 15),
        status="Emitida",
        codigo_verificacao="X",
        valor_servico=10.0,
        valor_iss=0.5,
        competencia="202408",
    )


class TestConsultas:
    def test_por_numero_local(self, service, repository):
        repository.create(Document(numero_documento="42", competencia="202408"))
        assert service.consultar_por_numero("42").numero_documento == "42"
        assert service.consultar_por_numero("43") is None

    def test_por_intervalo(self, service, client):
        client.consultar_xml.return_value = [_response("10")]
        result = service.consultar_xml_por_intervalo("10", "20")
        assert [r.numero_nfse for r in result] == ["10"]
        client.consultar_xml.assert_called_once_with(
            ConsultarXMLRequest(nr_inicial="10", nr_final="20")
        )

    def test_por_data_with_page(self, service, client):
        client.consultar_xml.return_value = []
        service.consultar_xml_por_data("2024-08-01", "2024-08-31", page=2)
        req = client.consultar_xml.call_args[0][0]
        assert req.params() == {
            "dt_inicial": "2024-08-01",
            "dt_final": "2024-08-31",
            "nr_page": "2",
        }

    def test_por_competencia(self, service, client):
        client.consultar_xml.return_value = []
        service.consultar_xml_por_competencia("202408")
        req = client.consultar_xml.call_args[0][0]
        assert req.params() == {"nr_competencia": "202408"}

    def test_retries_transient_error(self, service, client):
        client.consultar_xml.side_effect = [requests.exceptions.ConnectionError("x"), []]
        assert service.consultar_xml_por_competencia("202408") == []
        assert client.consultar_xml.call_count == 2

    def test_ultimo_rps(self, service, client):
        client.ultimo_rps_enviado.return_value = "1502"
        assert service.ultimo_rps_enviado() == "1502"

    def test_ultimo_rps_error_propagates(self, service, client):
        client.ultimo_rps_enviado.side_effect = TaxApiError("Campo ultimo_rps não encontrado")
        with pytest.raises(TaxApiError):
            service.ultimo_rps_enviado()

    def test_unknown_municipality(self, repository, storage):
        service = NFSeService(ClientRegistry(), repository, storage, ibge="9999999")
        with pytest.raises(MunicipalityNotImplementedError):
            service.ultimo_rps_enviado()


class TestGetXmlContent:
    def test_cnpj_key(self, service, repository, storage):
        repository.create(
            Document(numero_documento="7", competencia="202408", cnpj_emitente="32800353000162")
        )
        storage.put(object_key_with_cnpj("7", "202408", "32800353000162"), b"<novo/>")
        assert service.get_xml_content("7", "202408") == b"<novo/>"

    def test_recorded_key_first(self, service, repository, storage):
        repository.create(
            Document(numero_documento="7", competencia="202408", xml_object_key="custom/7.xml")
        )
        storage.put("custom/7.xml", b"<registrado/>")
        storage.put(object_key("7", "202408"), b"<legado/>")
        assert service.get_xml_content("7", "202408") == b"<registrado/>"

    def test_legacy_fallback(self, service, repository, storage):
        repository.create(
            Document(numero_documento="7", competencia="202408", cnpj_emitente="32800353000162")
        )
        storage.put(object_key("7", "202408"), b"<legado/>")
        assert service.get_xml_content("7", "202408") == b"<legado/>"

    def test_legacy_without_row(self, service, storage):
        storage.put(object_key("8", "202408"), b"<legado/>")
        assert service.get_xml_content("8", "202408") == b"<legado/>"

    def test_not_found(self, service):
        with pytest.raises(XmlNotFoundError, match="9"):
            service.get_xml_content("9", "202408")


class TestSincronizar:
    def test_runs_sync_job(self, service, client, repository):
        client.fetch_page.return_value = [_response("1"), _response("2")]
        result = service.sincronizar("202408")
        assert result.processed == 2
        assert result.competencia == "202408"
        client.fetch_page.assert_called_once_with("202408", 1)
        assert repository.exists_by_numero("2")

    def test_first_page_failure(self, service, client):
        client.fetch_page.side_effect = TaxApiError("Erro API xmlnfse (401): no", status_code=401)
        with pytest.raises(SyncError):
            service.sincronizar("202408")
