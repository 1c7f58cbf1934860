from __future__ import annotations

from unittest.mock import patch

import pytest

from zemdocs.models.nfse import ConsultarXMLRequest, NFSeResponse
from zemdocs.services.exceptions import MunicipalityNotImplementedError
from zemdocs.services.imperatriz_client import ImperatrizClient
from zemdocs.services.municipal_client import ClientRegistry, MunicipalClient, build_registry


class _FakeClient(MunicipalClient):
    def __init__(self):
        self.requests: list[ConsultarXMLRequest] = []

    def consultar_xml(self, req: ConsultarXMLRequest) -> list[NFSeResponse]:
        self.requests.append(req)
        return []

    def ultimo_rps_enviado(self) -> str:
        return "0"


_MUNICIPIOS = [
    {
        "ibge": "2105302",
        "nome": "Imperatriz-MA",
        "provider": "imperatriz",
        "base_url": "https://api.example/nfse",
        "token_env": "IMPERATRIZ_TOKEN",
    }
]


class TestFetchPage:
    def test_builds_competencia_request(self):
        client = _FakeClient()
        client.fetch_page("202408", 3)
        assert client.requests == [ConsultarXMLRequest(nr_competencia="202408", nr_page="3")]


class TestClientRegistry:
    def test_register_and_get(self):
        registry = ClientRegistry()
        client = _FakeClient()
        registry.register("2105302", client)
        assert registry.get("2105302") is client
        assert "2105302" in registry
        assert registry.list() == {"2105302": client}

    def test_unknown_municipality(self):
        with pytest.raises(MunicipalityNotImplementedError, match="3550308"):
            ClientRegistry().get("3550308")


class TestBuildRegistry:
    def test_imperatriz(self, monkeypatch):
        monkeypatch.setenv("IMPERATRIZ_TOKEN", "tok")
        registry = build_registry(_MUNICIPIOS, strict_dates=True)
        client = registry.get("2105302")
        assert isinstance(client, ImperatrizClient)
        assert client.token == "tok"
        assert client.base_url == "https://api.example/nfse"
        assert client.nome == "Imperatriz-MA"
        assert client.strict_dates is True

    def test_unknown_provider(self, monkeypatch):
        monkeypatch.setenv("IMPERATRIZ_TOKEN", "tok")
        entries = [{**_MUNICIPIOS[0], "provider": "ginfes"}]
        with pytest.raises(MunicipalityNotImplementedError, match="ginfes"):
            build_registry(entries)

    def test_missing_token(self, monkeypatch):
        monkeypatch.delenv("IMPERATRIZ_TOKEN", raising=False)
        with (
            patch("zemdocs.config._get_keyring_token", return_value=None),
            pytest.raises(KeyError),
        ):
            build_registry(_MUNICIPIOS)
