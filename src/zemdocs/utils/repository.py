"""Relational document store backed by SQLAlchemy.

Uniqueness of ``numero_documento`` is enforced by the database; ``create``
turns a violation into DuplicateDocumentError so concurrent syncs that both
pass the existence check still end up with one row.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time

from sqlalchemy import BigInteger, Engine, cast, create_engine, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from zemdocs.models.document import Base, Document
from zemdocs.services.exceptions import DuplicateDocumentError

logger = logging.getLogger(__name__)

DATE_PAGE_SIZE = 50


def make_engine(url: str) -> Engine:
    """Create an engine; in-memory SQLite shares one connection across threads."""
    if url in ("sqlite://", "sqlite:///:memory:"):
        return create_engine(
            url, connect_args={"check_same_thread": False}, poolclass=StaticPool
        )
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(url, pool_pre_ping=True)


def _as_datetime(value: str | date | datetime, end_of_day: bool = False) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        value = date.fromisoformat(value)
    return datetime.combine(value, time.max if end_of_day else time.min)


class DocumentRepository:
    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self._session = sessionmaker(engine, expire_on_commit=False)

    @classmethod
    def from_url(cls, url: str) -> DocumentRepository:
        return cls(make_engine(url))

    def create_all(self) -> None:
        """Create missing tables and indexes."""
        Base.metadata.create_all(self.engine)

    def session(self) -> Session:
        return self._session()

    def create(self, document: Document) -> Document:
        """Insert *document*. Raises DuplicateDocumentError if its number is taken."""
        with self.session() as s:
            s.add(document)
            try:
                s.commit()
            except IntegrityError:
                s.rollback()
                if self.exists_by_numero(document.numero_documento):
                    raise DuplicateDocumentError(document.numero_documento) from None
                raise
        return document

    def exists_by_numero(self, numero: str) -> bool:
        with self.session() as s:
            stmt = select(func.count()).select_from(Document).where(
                Document.numero_documento == numero
            )
            return s.scalar(stmt) > 0

    def get_by_numero(self, numero: str) -> Document | None:
        with self.session() as s:
            return s.scalars(
                select(Document).where(Document.numero_documento == numero)
            ).one_or_none()

    def get_by_numero_rps(self, numero_rps: str) -> Document | None:
        with self.session() as s:
            return s.scalars(
                select(Document)
                .where(Document.numero_rps == numero_rps)
                .order_by(Document.created_at.desc())
                .limit(1)
            ).first()

    def list_by_intervalo_numeros(self, nr_inicial: str, nr_final: str) -> list[Document]:
        numero = cast(Document.numero_documento, BigInteger)
        with self.session() as s:
            return list(
                s.scalars(
                    select(Document)
                    .where(numero.between(int(nr_inicial), int(nr_final)))
                    .order_by(numero)
                )
            )

    def list_by_intervalo_datas(
        self,
        dt_inicial: str | date | datetime,
        dt_final: str | date | datetime,
        page: int = 1,
        limit: int = DATE_PAGE_SIZE,
    ) -> list[Document]:
        """Documents issued between the two dates (inclusive), one page at a time."""
        start = _as_datetime(dt_inicial)
        end = _as_datetime(dt_final, end_of_day=True)
        offset = (max(page, 1) - 1) * limit
        with self.session() as s:
            return list(
                s.scalars(
                    select(Document)
                    .where(Document.data_emissao.between(start, end))
                    .order_by(Document.data_emissao)
                    .limit(limit)
                    .offset(offset)
                )
            )

    def list_by_competencia(
        self, competencia: str, limit: int | None = None, offset: int = 0
    ) -> list[Document]:
        stmt = (
            select(Document)
            .where(Document.competencia == competencia)
            .order_by(Document.data_emissao.desc())
            .offset(offset)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        with self.session() as s:
            return list(s.scalars(stmt))

    def count_by_competencia(self, competencia: str) -> int:
        with self.session() as s:
            return s.scalar(
                select(func.count()).select_from(Document).where(
                    Document.competencia == competencia
                )
            )

    def ultimo_rps(self) -> str:
        """RPS number of the most recently created document, or "0" if empty."""
        with self.session() as s:
            value = s.scalar(
                select(Document.numero_rps)
                .order_by(Document.created_at.desc(), Document.id.desc())
                .limit(1)
            )
        return value or "0"
