from __future__ import annotations

import base64
import io
import zipfile

import pytest

from zemdocs.utils.repository import DocumentRepository
from zemdocs.utils.xml_storage import XmlStorage

# --- XML fixtures ---

SAMPLE_XML = """\
<?xml version="1.0" encoding="{encoding}"?>
<consultarNotaResponse>
  <ListaNfse>
    <ComplNfse>
      <Nfse>
        <InfNfse>
          <Numero>{numero}</Numero>
          <CodigoVerificacao>ABC123XYZ</CodigoVerificacao>
          <DataEmissao>2024-08-15 10:30:00</DataEmissao>
          <IdentificacaoRps>
            <Numero>{rps}</Numero>
            <Serie>A1</Serie>
            <Tipo>1</Tipo>
          </IdentificacaoRps>
          <Competencia>202408</Competencia>
          <Servico>
            <Valores>
              <ValorServicos>{valor}</ValorServicos>
              <ValorDeducoes>0,00</ValorDeducoes>
              <ValorPis>6,50</ValorPis>
              <ValorCofins>30,00</ValorCofins>
              <ValorInss>0</ValorInss>
              <ValorIr>15,00</ValorIr>
              <ValorCsll>10,00</ValorCsll>
              <OutrasRetencoes>0</OutrasRetencoes>
              <ValorIss>50,00</ValorIss>
              <Aliquota>5,00</Aliquota>
              <BaseCalculo>1000,00</BaseCalculo>
              <ValorLiquidoNfse>938,50</ValorLiquidoNfse>
            </Valores>
            <ItemListaServico>01.07</ItemListaServico>
            <CodigoCnae>620910000</CodigoCnae>
            <Discriminacao>{discriminacao}</Discriminacao>
            <IBGE>2105302</IBGE>
          </Servico>
          <PrestadorServico>
            <IdentificacaoPrestador>
              <Cnpj>{cnpj}</Cnpj>
              <InscricaoMunicipal>12345</InscricaoMunicipal>
            </IdentificacaoPrestador>
            <RazaoSocial>ZEM TECNOLOGIA LTDA</RazaoSocial>
          </PrestadorServico>
          <TomadorServico>
            <IdentificacaoTomador>
              <CpfCnpj>
                <Cnpj>06954925000115</Cnpj>
              </CpfCnpj>
            </IdentificacaoTomador>
            <RazaoSocial>CLIENTE EXEMPLO SA</RazaoSocial>
            <Endereco>
              <Endereco>RUA CEARA</Endereco>
              <Numero>100</Numero>
              <Complemento>SALA 2</Complemento>
              <Bairro>CENTRO</Bairro>
              <IBGE>2105302</IBGE>
              <Cep>65900000</Cep>
            </Endereco>
          </TomadorServico>
        </InfNfse>
      </Nfse>
    </ComplNfse>
  </ListaNfse>
</consultarNotaResponse>
"""


def build_xml(
    numero: str = "240000093",
    *,
    rps: str = "1501",
    valor: str = "1000,00",
    cnpj: str = "32800353000162",
    discriminacao: str = "PRESTAÇÃO DE SERVIÇOS DE INFORMÁTICA",
    encoding: str = "ISO-8859-1",
) -> bytes:
    """NFS-e XML encoded the way its declaration says."""
    text = SAMPLE_XML.format(
        numero=numero,
        rps=rps,
        valor=valor,
        cnpj=cnpj,
        discriminacao=discriminacao,
        encoding=encoding,
    )
    codec = "iso-8859-1" if encoding.upper() == "ISO-8859-1" else "utf-8"
    return text.encode(codec)


def zip_b64(*entries: tuple[str, bytes]) -> str:
    """Base64 of a ZIP holding *entries* in order."""
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", zipfile.ZIP_DEFLATED) as zf:
        for name, data in entries:
            zf.writestr(name, data)
    return base64.b64encode(buf.getvalue()).decode("ascii")


def api_record(numero: int, xml: bytes | None = None, dt_emissao: str = "2024-08-15 10:30:00") -> dict:
    """One ``Dados`` entry as returned by the municipal API."""
    if xml is None:
        xml = build_xml(str(numero))
    return {
        "NrNfse": numero,
        "DtEmissao": dt_emissao,
        "NrCompetencia": 202408,
        "XmlCompactado": zip_b64((f"{numero}.xml", xml)),
    }


@pytest.fixture
def sample_xml() -> bytes:
    return build_xml()


# --- Storage fixtures ---


@pytest.fixture
def repository() -> DocumentRepository:
    repo = DocumentRepository.from_url("sqlite://")
    repo.create_all()
    return repo


@pytest.fixture
def storage(tmp_path) -> XmlStorage:
    return XmlStorage(tmp_path / "xml")
