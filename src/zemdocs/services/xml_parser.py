"""Parse the NFS-e XML returned by the Imperatriz-MA API.

Layout: consultarNotaResponse/ListaNfse/ComplNfse/Nfse/InfNfse with
IdentificacaoRps, Servico (Valores + codes), PrestadorServico and
TomadorServico groups. Only malformed XML is fatal; numeric, integer and
date fields that fail to coerce fall back to zero values and are reported
in ``ParsedInvoice.warnings``.
"""

from __future__ import annotations

import logging
from datetime import datetime

from lxml import etree

from zemdocs.models.nfse import ParsedInvoice
from zemdocs.services.exceptions import XmlParseError
from zemdocs.utils.encoding import normalize_encoding, rewrite_declaration
from zemdocs.utils.numbers import parse_int, parse_locale_float

logger = logging.getLogger(__name__)

ROOT_TAG = "consultarNotaResponse"
INF_NFSE = "ListaNfse/ComplNfse/Nfse/InfNfse"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_PARSER = etree.XMLParser(resolve_entities=False, no_network=True, huge_tree=False)

# ParsedInvoice field -> path under Servico/Valores
_VALORES = {
    "valor_servico": "ValorServicos",
    "valor_iss": "ValorIss",
    "valor_deducoes": "ValorDeducoes",
    "valor_pis": "ValorPis",
    "valor_cofins": "ValorCofins",
    "valor_inss": "ValorInss",
    "valor_ir": "ValorIr",
    "valor_csll": "ValorCsll",
    "outras_retencoes": "OutrasRetencoes",
    "base_calculo": "BaseCalculo",
    "aliquota": "Aliquota",
    "valor_liquido": "ValorLiquidoNfse",
}


def _strip_namespaces(root: etree._Element) -> None:
    """Drop namespace URIs so element paths match by local name."""
    for el in root.iter():
        if isinstance(el.tag, str) and el.tag.startswith("{"):
            el.tag = etree.QName(el).localname


def parse_issue_datetime(value: str) -> datetime:
    """Parse ``YYYY-MM-DD HH:MM:SS``. Raises ValueError when invalid."""
    return datetime.strptime(value.strip(), DATE_FORMAT)


def parse_nfse_xml(xml: bytes | str) -> ParsedInvoice:
    """Parse an NFS-e XML document into a ParsedInvoice.

    Raw bytes go through the encoding normalizer first. Raises XmlParseError
    for malformed XML or an unexpected root element.
    """
    text = normalize_encoding(xml) if isinstance(xml, bytes) else rewrite_declaration(xml)
    try:
        root = etree.fromstring(text.encode("utf-8"), _PARSER)
    except etree.XMLSyntaxError as exc:
        raise XmlParseError(f"Erro ao fazer parse do XML: {exc}") from exc
    if root is None:
        raise XmlParseError("Erro ao fazer parse do XML: documento vazio")

    _strip_namespaces(root)
    if root.tag != ROOT_TAG:
        raise XmlParseError(
            f"Erro ao fazer parse do XML: esperado <{ROOT_TAG}>, encontrado <{root.tag}>"
        )

    inf = root.find(INF_NFSE)

    def txt(path: str) -> str:
        if inf is None:
            return ""
        return (inf.findtext(path) or "").strip()

    warnings: list[str] = []
    values: dict[str, float] = {}
    for name, tag in _VALORES.items():
        raw = txt(f"Servico/Valores/{tag}")
        try:
            values[name] = parse_locale_float(raw)
        except ValueError:
            values[name] = 0.0
            warnings.append(f"{tag}: valor inválido {raw!r}")

    tipo_raw = txt("IdentificacaoRps/Tipo")
    tipo_rps = 0
    if tipo_raw:
        try:
            tipo_rps = parse_int(tipo_raw)
        except ValueError:
            warnings.append(f"IdentificacaoRps/Tipo: inteiro inválido {tipo_raw!r}")

    data_raw = txt("DataEmissao")
    data_emissao = None
    try:
        data_emissao = parse_issue_datetime(data_raw)
    except ValueError:
        warnings.append(f"DataEmissao: data inválida {data_raw!r}")

    parsed = ParsedInvoice(
        numero_nfse=txt("Numero"),
        numero_rps=txt("IdentificacaoRps/Numero"),
        serie_rps=txt("IdentificacaoRps/Serie"),
        tipo_rps=tipo_rps,
        data_emissao=data_emissao,
        competencia=txt("Competencia"),
        codigo_verificacao=txt("CodigoVerificacao"),
        discriminacao=txt("Servico/Discriminacao"),
        # This schema has no dedicated service code; CNAE fills it.
        codigo_servico=txt("Servico/CodigoCnae"),
        item_lista_servico=txt("Servico/ItemListaServico"),
        codigo_municipio=txt("Servico/IBGE"),
        cnpj_prestador=txt("PrestadorServico/IdentificacaoPrestador/Cnpj"),
        inscricao_municipal_prestador=txt(
            "PrestadorServico/IdentificacaoPrestador/InscricaoMunicipal"
        ),
        razao_social_prestador=txt("PrestadorServico/RazaoSocial"),
        cnpj_tomador=txt("TomadorServico/IdentificacaoTomador/CpfCnpj/Cnpj"),
        razao_social_tomador=txt("TomadorServico/RazaoSocial"),
        endereco_tomador=txt("TomadorServico/Endereco/Endereco"),
        numero_tomador=txt("TomadorServico/Endereco/Numero"),
        complemento_tomador=txt("TomadorServico/Endereco/Complemento"),
        bairro_tomador=txt("TomadorServico/Endereco/Bairro"),
        cidade_tomador=txt("TomadorServico/Endereco/IBGE"),
        cep_tomador=txt("TomadorServico/Endereco/Cep"),
        warnings=tuple(warnings),
        **values,
    )
    if warnings:
        logger.debug("NFS-e %s parsed with warnings: %s", parsed.numero_nfse, "; ".join(warnings))
    return parsed
