from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Any

from requests import get

from zemdocs.config import API_TIMEOUT, BRT
from zemdocs.models.nfse import (
    STATUS_EMITIDA,
    ConsultarXMLRequest,
    NFSeResponse,
    RawRecord,
)
from zemdocs.services.exceptions import ArchiveError, TaxApiError, XmlParseError
from zemdocs.services.http_retry import API_READ, RetryableHTTPError, RetryPolicy
from zemdocs.services.municipal_client import MunicipalClient
from zemdocs.services.xml_parser import parse_issue_datetime, parse_nfse_xml
from zemdocs.utils.archive import decompress_xml

logger = logging.getLogger(__name__)


def _check_response(resp: Any, action: str, policy: RetryPolicy = API_READ) -> None:
    if not resp.ok:
        body = resp.text or ""
        message = f"Erro API {action} ({resp.status_code}): {body[:500]}"
        if resp.status_code in policy.retryable_status_codes:
            raise RetryableHTTPError(message, status_code=resp.status_code, body=body)
        raise TaxApiError(message, status_code=resp.status_code, body=body)


def _decode_json(resp: Any, action: str) -> Any:
    try:
        return resp.json()
    except ValueError as exc:
        raise TaxApiError(f"Erro ao decodificar resposta {action}: {exc}") from exc


def _now_brt() -> datetime:
    return datetime.now(BRT).replace(tzinfo=None)


class ImperatrizClient(MunicipalClient):
    """Client for the Imperatriz-MA NFS-e API.

    Every call sends the static municipality token as-is in the
    ``Authorization`` header (no "Bearer " prefix).
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        *,
        ibge: str = "2105302",
        nome: str = "Imperatriz-MA",
        timeout: float = API_TIMEOUT,
        strict_dates: bool = False,
        retry_policy: RetryPolicy = API_READ,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.ibge = ibge
        self.nome = nome
        self.timeout = timeout
        self.strict_dates = strict_dates
        self.retry_policy = retry_policy

    def _get(self, path: str, action: str, params: dict[str, str] | None = None) -> Any:
        url = f"{self.base_url}/{path}"
        headers = {
            "Authorization": self.token,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        logger.info("External API request GET %s %s", url, params or {})
        start = time.monotonic()
        try:
            resp = get(url, params=params, headers=headers, timeout=self.timeout)
        except Exception:
            logger.error(
                "External API failed GET %s after %.0fms",
                url,
                (time.monotonic() - start) * 1000,
            )
            raise
        logger.info(
            "External API response %s %d in %.0fms",
            url,
            resp.status_code,
            (time.monotonic() - start) * 1000,
        )
        _check_response(resp, action, self.retry_policy)
        return _decode_json(resp, action)

    def consultar_xml(self, req: ConsultarXMLRequest) -> list[NFSeResponse]:
        """Query ``/xmlnfse`` and normalize each record of the ``Dados`` array.

        Records that fail to decode or parse are logged and skipped; the rest
        of the page is still returned.
        """
        data = self._get("xmlnfse", "xmlnfse", params=req.params())
        if not isinstance(data, dict):
            raise TaxApiError("Erro ao decodificar resposta xmlnfse: envelope inválido")
        logger.debug(
            "xmlnfse page %s/%s (%s records, %s per page)",
            data.get("CurrentPage"),
            data.get("PageCount"),
            data.get("RecordCount"),
            data.get("RecordsPerPage"),
        )
        return self._convert(data.get("Dados") or [])

    def _convert(self, dados: list[dict]) -> list[NFSeResponse]:
        responses: list[NFSeResponse] = []
        for item in dados:
            try:
                record = RawRecord.from_dict(item)
            except (TypeError, ValueError, AttributeError):
                logger.error("Invalid record in xmlnfse response: %r", item, exc_info=True)
                continue
            response = self._convert_record(record)
            if response is not None:
                responses.append(response)
        return responses

    def _convert_record(self, record: RawRecord) -> NFSeResponse | None:
        try:
            xml_content = decompress_xml(record.xml_compactado)
        except ArchiveError as exc:
            logger.error("Erro ao descompactar XML da NFS-e %d: %s", record.numero_nfse, exc)
            return None

        try:
            parsed = parse_nfse_xml(xml_content)
        except (XmlParseError, ValueError) as exc:
            logger.error("Erro ao fazer parse do XML da NFS-e %d: %s", record.numero_nfse, exc)
            return None

        warnings = list(parsed.warnings)
        try:
            data_emissao = parse_issue_datetime(record.dt_emissao)
        except ValueError:
            if parsed.data_emissao is not None:
                data_emissao = parsed.data_emissao
                warnings.append(f"DtEmissao inválida {record.dt_emissao!r}: usando DataEmissao do XML")
            elif self.strict_dates:
                logger.error(
                    "Data de emissão inválida na NFS-e %d: %r", record.numero_nfse, record.dt_emissao
                )
                return None
            else:
                data_emissao = _now_brt()
                warnings.append(f"DtEmissao inválida {record.dt_emissao!r}: usando data atual")
                logger.warning(
                    "Data de emissão inválida na NFS-e %d (%r), usando data atual",
                    record.numero_nfse,
                    record.dt_emissao,
                )

        return NFSeResponse(
            numero_nfse=str(record.numero_nfse),
            numero_rps=parsed.numero_rps,
            serie_rps=parsed.serie_rps,
            data_emissao=data_emissao,
            status=STATUS_EMITIDA,
            codigo_verificacao=parsed.codigo_verificacao,
            valor_servico=parsed.valor_servico,
            valor_iss=parsed.valor_iss,
            competencia=str(record.competencia),
            xml_content=xml_content,
            warnings=tuple(warnings),
        )

    def ultimo_rps_enviado(self) -> str:
        data = self._get("ultimorpsenviado", "ultimorpsenviado")
        value = data.get("ultimo_rps") if isinstance(data, dict) else None
        if not isinstance(value, str):
            raise TaxApiError("Campo ultimo_rps não encontrado na resposta")
        return value
