from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import DateTime, Float, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class DocumentType(str, enum.Enum):
    NFSE = "NFS-e"
    NFE = "NF-e"
    NFCE = "NFC-e"
    CTE = "CT-e"
    MDFE = "MDF-e"

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]


_DISPLAY_NAMES = {
    DocumentType.NFSE: "Nota Fiscal de Serviço Eletrônica",
    DocumentType.NFE: "Nota Fiscal Eletrônica",
    DocumentType.NFCE: "Nota Fiscal de Consumidor Eletrônica",
    DocumentType.CTE: "Conhecimento de Transporte Eletrônico",
    DocumentType.MDFE: "Manifesto Eletrônico de Documentos Fiscais",
}


def _now() -> datetime:
    return datetime.now()


class Document(Base):
    """A fiscal document synchronized from a municipality.

    The raw XML lives in the XML storage under ``xml_object_key``; it is not
    duplicated here.
    """

    __tablename__ = "documents"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    document_type: Mapped[str] = mapped_column(String(10), default=DocumentType.NFSE.value)
    numero_documento: Mapped[str] = mapped_column(String(30), unique=True, nullable=False)
    codigo_verificacao: Mapped[str] = mapped_column(String(50), default="")

    numero_rps: Mapped[str] = mapped_column(String(30), default="", index=True)
    serie_rps: Mapped[str] = mapped_column(String(10), default="")
    tipo_rps: Mapped[int] = mapped_column(Integer, default=1)

    data_emissao: Mapped[datetime | None] = mapped_column(DateTime, nullable=True, index=True)
    competencia: Mapped[str] = mapped_column(String(6), default="", index=True)
    status: Mapped[str] = mapped_column(String(20), default="pendente")

    valor_nota: Mapped[float] = mapped_column(Float, default=0.0)
    aliquota_iss: Mapped[float] = mapped_column(Float, default=0.0)
    valor_iss: Mapped[float] = mapped_column(Float, default=0.0)
    base_calculo: Mapped[float] = mapped_column(Float, default=0.0)
    valor_deducoes: Mapped[float] = mapped_column(Float, default=0.0)
    valor_pis: Mapped[float] = mapped_column(Float, default=0.0)
    valor_cofins: Mapped[float] = mapped_column(Float, default=0.0)
    valor_inss: Mapped[float] = mapped_column(Float, default=0.0)
    valor_ir: Mapped[float] = mapped_column(Float, default=0.0)
    valor_csll: Mapped[float] = mapped_column(Float, default=0.0)
    outras_retencoes: Mapped[float] = mapped_column(Float, default=0.0)
    valor_liquido: Mapped[float] = mapped_column(Float, default=0.0)

    cnpj_emitente: Mapped[str] = mapped_column(String(14), default="")
    razao_social_emitente: Mapped[str] = mapped_column(String(200), default="")
    inscricao_municipal_emitente: Mapped[str] = mapped_column(String(30), default="")

    cnpj_destinatario: Mapped[str] = mapped_column(String(14), default="")
    razao_social_destinatario: Mapped[str] = mapped_column(String(200), default="")
    inscricao_municipal_destinatario: Mapped[str] = mapped_column(String(30), default="")
    endereco_destinatario: Mapped[str] = mapped_column(String(200), default="")
    numero_endereco_destinatario: Mapped[str] = mapped_column(String(20), default="")
    complemento_destinatario: Mapped[str] = mapped_column(String(100), default="")
    bairro_destinatario: Mapped[str] = mapped_column(String(100), default="")
    cidade_destinatario: Mapped[str] = mapped_column(String(20), default="")
    uf_destinatario: Mapped[str] = mapped_column(String(2), default="")
    cep_destinatario: Mapped[str] = mapped_column(String(10), default="")

    discriminacao: Mapped[str] = mapped_column(Text, default="")
    codigo_servico: Mapped[str] = mapped_column(String(20), default="")
    item_lista_servico: Mapped[str] = mapped_column(String(20), default="")
    codigo_municipio: Mapped[str] = mapped_column(String(10), default="")
    codigo_ibge: Mapped[str] = mapped_column(String(10), default="")

    xml_object_key: Mapped[str] = mapped_column(String(255), default="")

    created_at: Mapped[datetime] = mapped_column(DateTime, default=_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_now, onupdate=_now)

    @property
    def is_nfse(self) -> bool:
        return self.document_type == DocumentType.NFSE.value

    def __repr__(self) -> str:
        return f"<Document {self.document_type} {self.numero_documento}>"


Index("ix_documents_competencia_emissao", Document.competencia, Document.data_emissao)
