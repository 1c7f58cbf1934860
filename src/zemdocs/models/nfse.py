from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

STATUS_EMITIDA = "Emitida"


@dataclass(frozen=True)
class RawRecord:
    """One entry of the ``Dados`` array returned by the municipal API."""

    numero_nfse: int
    dt_emissao: str
    competencia: int  # YYYYMM
    xml_compactado: str  # Base64 of a ZIP holding one XML file

    @classmethod
    def from_dict(cls, d: dict) -> RawRecord:
        """Build from an API entry. Raises ValueError without a positive ``NrNfse``."""
        numero = d.get("NrNfse")
        if numero is None:
            raise ValueError("NrNfse ausente no registro")
        numero = int(numero)
        if numero <= 0:
            raise ValueError(f"NrNfse inválido: {numero}")
        return cls(
            numero_nfse=numero,
            dt_emissao=str(d.get("DtEmissao") or ""),
            competencia=int(d.get("NrCompetencia") or 0),
            xml_compactado=str(d.get("XmlCompactado") or ""),
        )


@dataclass(frozen=True)
class ParsedInvoice:
    """Flat view of an NFS-e XML document.

    Numeric fields that fail to coerce are 0.0, ``tipo_rps`` is 0 and
    ``data_emissao`` is None; each such fallback adds a message to
    ``warnings``.
    """

    numero_nfse: str = ""
    numero_rps: str = ""
    serie_rps: str = ""
    tipo_rps: int = 0
    data_emissao: datetime | None = None
    competencia: str = ""
    codigo_verificacao: str = ""

    valor_servico: float = 0.0
    valor_iss: float = 0.0
    valor_deducoes: float = 0.0
    valor_pis: float = 0.0
    valor_cofins: float = 0.0
    valor_inss: float = 0.0
    valor_ir: float = 0.0
    valor_csll: float = 0.0
    outras_retencoes: float = 0.0
    base_calculo: float = 0.0
    aliquota: float = 0.0
    valor_liquido: float = 0.0

    discriminacao: str = ""
    codigo_servico: str = ""  # from CodigoCnae
    item_lista_servico: str = ""
    codigo_municipio: str = ""  # from IBGE

    cnpj_prestador: str = ""
    inscricao_municipal_prestador: str = ""
    razao_social_prestador: str = ""

    cnpj_tomador: str = ""
    inscricao_municipal_tomador: str = ""  # not present in this municipality's schema
    razao_social_tomador: str = ""
    endereco_tomador: str = ""
    numero_tomador: str = ""
    complemento_tomador: str = ""
    bairro_tomador: str = ""
    cidade_tomador: str = ""
    uf_tomador: str = ""  # not present in this municipality's schema
    cep_tomador: str = ""

    warnings: tuple[str, ...] = ()


@dataclass(frozen=True)
class NFSeResponse:
    """Normalized per-record response produced by a municipal client."""

    numero_nfse: str
    numero_rps: str
    serie_rps: str
    data_emissao: datetime
    status: str
    codigo_verificacao: str
    valor_servico: float
    valor_iss: float
    competencia: str
    xml_content: bytes = b""
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True)
class ConsultarXMLRequest:
    """Query for the ``/xmlnfse`` endpoint.

    Exactly one mode is sent: number range, issue-date range, or competence.
    When several are filled, that order decides.
    """

    nr_inicial: str = ""
    nr_final: str = ""
    dt_inicial: str = ""
    dt_final: str = ""
    nr_competencia: str = ""
    nr_page: str = ""

    def params(self) -> dict[str, str]:
        if self.nr_inicial and self.nr_final:
            return {"nr_inicial": self.nr_inicial, "nr_final": self.nr_final}
        if self.dt_inicial and self.dt_final:
            params = {"dt_inicial": self.dt_inicial, "dt_final": self.dt_final}
        elif self.nr_competencia:
            params = {"nr_competencia": self.nr_competencia}
        else:
            raise ValueError(
                "Consulta requer nr_inicial+nr_final, dt_inicial+dt_final ou nr_competencia"
            )
        if self.nr_page:
            params["nr_page"] = self.nr_page
        return params
