"""Synchronize one competence period from a municipal API into local storage.

Pages are fetched in ascending order and records processed one by one, in
the order the API returns them. A run only fails when the first page cannot
be fetched; a later page failure ends the run with the work done so far,
and per-record failures are counted and logged without stopping the run.
"""

from __future__ import annotations

import enum
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass

from zemdocs.config import SYNC_PAGE_SIZE
from zemdocs.models.document import Document, DocumentType
from zemdocs.models.nfse import NFSeResponse, ParsedInvoice
from zemdocs.services.exceptions import DuplicateDocumentError, SyncCancelled, SyncError
from zemdocs.services.http_retry import SYNC_PAGE_FETCH, RetryPolicy, retry_call
from zemdocs.services.municipal_client import MunicipalClient
from zemdocs.services.xml_parser import parse_nfse_xml
from zemdocs.utils.repository import DocumentRepository
from zemdocs.utils.xml_storage import XmlStorage, object_key, object_key_with_cnpj

logger = logging.getLogger(__name__)


class Outcome(enum.Enum):
    CREATED = "created"
    SKIPPED = "skipped"


@dataclass
class SyncResult:
    competencia: str
    pages: int = 0
    processed: int = 0
    skipped: int = 0
    errors: int = 0
    truncated: bool = False


def _extract_metadata(xml_content: bytes, numero: str) -> ParsedInvoice | None:
    """Re-parse the raw XML for fields the page response does not carry.

    A parse failure here is not fatal: the page-level values are used.
    """
    if not xml_content:
        return None
    try:
        return parse_nfse_xml(xml_content)
    except ValueError as exc:
        logger.debug("Could not re-parse XML of NFS-e %s, using API values: %s", numero, exc)
        return None


def build_document(resp: NFSeResponse, meta: ParsedInvoice | None) -> Document:
    """Merge the page-level summary with re-parsed XML fields.

    Re-parsed values win only when non-zero / non-empty.
    """
    doc = Document(
        document_type=DocumentType.NFSE.value,
        numero_documento=resp.numero_nfse,
        numero_rps=resp.numero_rps,
        serie_rps=resp.serie_rps,
        tipo_rps=1,
        data_emissao=resp.data_emissao,
        status=resp.status,
        codigo_verificacao=resp.codigo_verificacao,
        valor_nota=resp.valor_servico,
        aliquota_iss=0.0,
        valor_iss=resp.valor_iss,
        competencia=resp.competencia,
    )
    if meta is None:
        return doc

    numeric = {
        "valor_nota": meta.valor_servico,
        "valor_iss": meta.valor_iss,
        "aliquota_iss": meta.aliquota,
        "base_calculo": meta.base_calculo,
        "valor_deducoes": meta.valor_deducoes,
        "valor_pis": meta.valor_pis,
        "valor_cofins": meta.valor_cofins,
        "valor_inss": meta.valor_inss,
        "valor_ir": meta.valor_ir,
        "valor_csll": meta.valor_csll,
        "outras_retencoes": meta.outras_retencoes,
        "valor_liquido": meta.valor_liquido,
        "tipo_rps": meta.tipo_rps,
    }
    text = {
        "numero_rps": meta.numero_rps,
        "serie_rps": meta.serie_rps,
        "codigo_verificacao": meta.codigo_verificacao,
        "cnpj_emitente": meta.cnpj_prestador,
        "razao_social_emitente": meta.razao_social_prestador,
        "inscricao_municipal_emitente": meta.inscricao_municipal_prestador,
        "cnpj_destinatario": meta.cnpj_tomador,
        "razao_social_destinatario": meta.razao_social_tomador,
        "inscricao_municipal_destinatario": meta.inscricao_municipal_tomador,
        "endereco_destinatario": meta.endereco_tomador,
        "numero_endereco_destinatario": meta.numero_tomador,
        "complemento_destinatario": meta.complemento_tomador,
        "bairro_destinatario": meta.bairro_tomador,
        "cidade_destinatario": meta.cidade_tomador,
        "uf_destinatario": meta.uf_tomador,
        "cep_destinatario": meta.cep_tomador,
        "discriminacao": meta.discriminacao,
        "codigo_servico": meta.codigo_servico,
        "item_lista_servico": meta.item_lista_servico,
        "codigo_municipio": meta.codigo_municipio,
        "codigo_ibge": meta.codigo_municipio,
    }
    for name, value in numeric.items():
        if value > 0:
            setattr(doc, name, value)
    for name, value in text.items():
        if value:
            setattr(doc, name, value)
    return doc


class NFSeSyncJob:
    """Sync job for one competence period, registrable on the Scheduler."""

    def __init__(
        self,
        client: MunicipalClient,
        repository: DocumentRepository,
        storage: XmlStorage,
        competencia: str,
        *,
        page_size: int = SYNC_PAGE_SIZE,
        retry_policy: RetryPolicy = SYNC_PAGE_FETCH,
        sleep_func: Callable[[float], object] | None = None,
    ) -> None:
        self.client = client
        self.repository = repository
        self.storage = storage
        self.competencia = competencia
        self.page_size = page_size
        self.retry_policy = retry_policy
        self.sleep_func = sleep_func

    @property
    def name(self) -> str:
        return f"nfse-sync-{self.competencia}"

    def execute(self, cancel: threading.Event | None = None) -> SyncResult:
        """Run the sync. Raises SyncError if page 1 fails, SyncCancelled on cancellation."""
        logger.info("Starting NFS-e sync for competencia %s", self.competencia)
        result = SyncResult(competencia=self.competencia)
        page = 1

        while True:
            if cancel is not None and cancel.is_set():
                raise SyncCancelled(f"Sincronização {self.competencia} cancelada")

            try:
                records = self._fetch_page(page, cancel)
            except SyncCancelled:
                raise
            except Exception as exc:
                logger.error(
                    "Failed to fetch page %d of competencia %s: %s", page, self.competencia, exc
                )
                if page == 1:
                    raise SyncError(f"Erro na primeira página: {exc}") from exc
                result.truncated = True
                break

            result.pages += 1
            if not records:
                break

            for resp in records:
                try:
                    outcome = self.process_record(resp)
                except Exception:
                    logger.exception("Failed to process NFS-e %s", resp.numero_nfse)
                    result.errors += 1
                    continue
                if outcome is Outcome.CREATED:
                    result.processed += 1
                else:
                    result.skipped += 1

            logger.info(
                "Page %d processed: %d records (processed=%d skipped=%d errors=%d)",
                page,
                len(records),
                result.processed,
                result.skipped,
                result.errors,
            )

            if len(records) < self.page_size:
                break
            page += 1

        logger.info(
            "NFS-e sync finished for competencia %s: processed=%d skipped=%d errors=%d pages=%d",
            self.competencia,
            result.processed,
            result.skipped,
            result.errors,
            result.pages,
        )
        return result

    def _fetch_page(self, page: int, cancel: threading.Event | None) -> list[NFSeResponse]:
        return retry_call(
            lambda: self.client.fetch_page(self.competencia, page),
            self.retry_policy,
            sleep_func=self.sleep_func,
            cancel=cancel,
        )

    def process_record(self, resp: NFSeResponse) -> Outcome:
        """Persist one normalized response. Already-known numbers are skipped."""
        if self.repository.exists_by_numero(resp.numero_nfse):
            logger.debug("NFS-e %s already exists, skipping", resp.numero_nfse)
            return Outcome.SKIPPED

        meta = _extract_metadata(resp.xml_content, resp.numero_nfse)
        doc = build_document(resp, meta)

        key = ""
        if resp.xml_content:
            if doc.cnpj_emitente:
                key = object_key_with_cnpj(resp.numero_nfse, resp.competencia, doc.cnpj_emitente)
            else:
                key = object_key(resp.numero_nfse, resp.competencia)
        doc.xml_object_key = key

        try:
            self.repository.create(doc)
        except DuplicateDocumentError:
            logger.debug("NFS-e %s inserted concurrently, skipping", resp.numero_nfse)
            return Outcome.SKIPPED

        if key:
            try:
                self.storage.put(key, resp.xml_content)
            except OSError:
                # Row stays committed without its blob.
                logger.error(
                    "Failed to store XML of NFS-e %s at %s",
                    resp.numero_nfse,
                    key,
                    exc_info=True,
                )

        logger.debug("NFS-e %s stored (valor_nota=%.2f)", resp.numero_nfse, doc.valor_nota)
        return Outcome.CREATED
