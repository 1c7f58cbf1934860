from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from zemdocs.models.nfse import ConsultarXMLRequest, NFSeResponse
from zemdocs.services.exceptions import MunicipalityNotImplementedError

logger = logging.getLogger(__name__)


class MunicipalClient(ABC):
    """Capability every municipal NFS-e API variant provides."""

    ibge: str = ""
    nome: str = ""

    @abstractmethod
    def consultar_xml(self, req: ConsultarXMLRequest) -> list[NFSeResponse]:
        """Fetch one page of XML documents matching *req*."""

    @abstractmethod
    def ultimo_rps_enviado(self) -> str:
        """Return the number of the last RPS submitted to the municipality."""

    def fetch_page(self, competencia: str, page: int) -> list[NFSeResponse]:
        """Fetch page *page* (1-based) of a competence period."""
        return self.consultar_xml(
            ConsultarXMLRequest(nr_competencia=competencia, nr_page=str(page))
        )


class ClientRegistry:
    """Maps IBGE municipality codes to their client. Built once at startup."""

    def __init__(self) -> None:
        self._clients: dict[str, MunicipalClient] = {}

    def register(self, ibge: str, client: MunicipalClient) -> None:
        self._clients[ibge] = client
        logger.debug("Registered municipal client %s for %s", type(client).__name__, ibge)

    def get(self, ibge: str) -> MunicipalClient:
        try:
            return self._clients[ibge]
        except KeyError:
            raise MunicipalityNotImplementedError(
                f"Município {ibge} não implementado"
            ) from None

    def list(self) -> dict[str, MunicipalClient]:
        return dict(self._clients)

    def __contains__(self, ibge: object) -> bool:
        return ibge in self._clients


def build_registry(municipios: list[dict], *, strict_dates: bool = False) -> ClientRegistry:
    """Construct a registry from the municipality table (see ``config.load_municipios``).

    Raises MunicipalityNotImplementedError for an unknown provider and
    KeyError when a municipality has no API token configured.
    """
    from zemdocs.config import get_api_token
    from zemdocs.services.imperatriz_client import ImperatrizClient

    providers = {"imperatriz": ImperatrizClient}

    registry = ClientRegistry()
    for entry in municipios:
        ibge = str(entry["ibge"])
        provider = entry.get("provider", "")
        cls = providers.get(provider)
        if cls is None:
            raise MunicipalityNotImplementedError(
                f"Provedor '{provider}' do município {ibge} não implementado"
            )
        token = get_api_token(entry.get("token_env", ""), ibge)
        registry.register(
            ibge,
            cls(
                entry["base_url"],
                token,
                ibge=ibge,
                nome=entry.get("nome", ""),
                strict_dates=strict_dates,
            ),
        )
    return registry
