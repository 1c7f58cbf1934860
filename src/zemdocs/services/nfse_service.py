from __future__ import annotations

import logging
import threading
from collections.abc import Callable

from zemdocs.config import IBGE_IMPERATRIZ
from zemdocs.models.document import Document
from zemdocs.models.nfse import ConsultarXMLRequest, NFSeResponse
from zemdocs.services.exceptions import XmlNotFoundError
from zemdocs.services.http_retry import API_READ, retry_call
from zemdocs.services.municipal_client import ClientRegistry, MunicipalClient
from zemdocs.services.sync_job import NFSeSyncJob, SyncResult
from zemdocs.utils.repository import DocumentRepository
from zemdocs.utils.xml_storage import XmlStorage, object_key, object_key_with_cnpj

logger = logging.getLogger(__name__)


class NFSeService:
    """Query and manual-sync entry points for one municipality."""

    def __init__(
        self,
        registry: ClientRegistry,
        repository: DocumentRepository,
        storage: XmlStorage,
        ibge: str = IBGE_IMPERATRIZ,
        *,
        sleep_func: Callable[[float], object] | None = None,
    ) -> None:
        self.registry = registry
        self.repository = repository
        self.storage = storage
        self.ibge = ibge
        self.sleep_func = sleep_func

    @property
    def client(self) -> MunicipalClient:
        return self.registry.get(self.ibge)

    def _consultar(self, req: ConsultarXMLRequest) -> list[NFSeResponse]:
        client = self.client
        return retry_call(
            lambda: client.consultar_xml(req), API_READ, sleep_func=self.sleep_func
        )

    # --- Local store ---

    def consultar_por_numero(self, numero: str) -> Document | None:
        return self.repository.get_by_numero(numero)

    # --- External API pass-through ---

    def consultar_xml_por_intervalo(self, nr_inicial: str, nr_final: str) -> list[NFSeResponse]:
        return self._consultar(ConsultarXMLRequest(nr_inicial=nr_inicial, nr_final=nr_final))

    def consultar_xml_por_data(
        self, dt_inicial: str, dt_final: str, page: int | None = None
    ) -> list[NFSeResponse]:
        return self._consultar(
            ConsultarXMLRequest(
                dt_inicial=dt_inicial,
                dt_final=dt_final,
                nr_page=str(page) if page else "",
            )
        )

    def consultar_xml_por_competencia(
        self, competencia: str, page: int | None = None
    ) -> list[NFSeResponse]:
        return self._consultar(
            ConsultarXMLRequest(nr_competencia=competencia, nr_page=str(page) if page else "")
        )

    def ultimo_rps_enviado(self) -> str:
        client = self.client
        return retry_call(client.ultimo_rps_enviado, API_READ, sleep_func=self.sleep_func)

    # --- Object store ---

    def get_xml_content(self, numero: str, competencia: str) -> bytes:
        """Return the stored raw XML of an invoice.

        Tries the key recorded on the row, then the CNPJ layout, then the
        legacy layout. Raises XmlNotFoundError when none holds the blob.
        """
        keys: list[str] = []
        doc = self.repository.get_by_numero(numero)
        if doc is not None:
            if doc.xml_object_key:
                keys.append(doc.xml_object_key)
            if doc.cnpj_emitente:
                keys.append(object_key_with_cnpj(numero, competencia, doc.cnpj_emitente))
        keys.append(object_key(numero, competencia))

        for key in dict.fromkeys(keys):
            if self.storage.exists(key):
                return self.storage.get(key)
            logger.debug("XML of NFS-e %s not at %s", numero, key)
        raise XmlNotFoundError(f"XML da NFS-e {numero} não encontrado")

    # --- Manual trigger ---

    def sync_job(self, competencia: str) -> NFSeSyncJob:
        return NFSeSyncJob(
            self.client,
            self.repository,
            self.storage,
            competencia,
            sleep_func=self.sleep_func,
        )

    def sincronizar(
        self, competencia: str, cancel: threading.Event | None = None
    ) -> SyncResult:
        """Run a full sync of *competencia* now. Raises SyncError if page 1 fails."""
        logger.info("Manual sync requested for competencia %s", competencia)
        return self.sync_job(competencia).execute(cancel)
