"""
Modelli SQLAlchemy per la numerazione delle Fatture
Progetto: Tabula (Database no-code e Fatturazione)

Le fatture vere e proprie sono righe delle tabelle dinamiche protette
(invoices / invoice_items). Qui vivono solo i dati di supporto:
- InvoiceSeries: Configurazione di una serie di numerazione
- InvoiceNumberSequence: Contatore progressivo per identificativo di serie
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.models import Base
from app.models.mixins import IntegerIdMixin, TimestampMixin


class InvoiceSeries(Base, IntegerIdMixin, TimestampMixin):
    """
    Serie di numerazione configurata da un tenant.

    Il numero generato ha la forma:
        [prefix-]SERIES[-YYYY][-MM]-NNNN[-suffix]

    Attributes:
        tenant_id: Tenant proprietario
        database_id: Database logico (None = tutti i database del tenant)
        series: Nome della serie (es. "INV", "PRO")
        prefix: Prefisso opzionale anteposto alla serie
        suffix: Suffisso opzionale in coda al numero
        separator: Separatore tra le parti
        include_year: Include l'anno di emissione
        include_month: Include il mese di emissione
        start_number: Primo progressivo
        is_default: Serie usata quando la richiesta non ne indica una
    """

    __tablename__ = "invoice_series"
    __table_args__ = (
        UniqueConstraint("tenant_id", "database_id", "series", name="uq_invoice_series_name"),
        CheckConstraint("start_number >= 1", name="ck_invoice_series_start_number"),
    )

    tenant_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    database_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("databases.id", ondelete="CASCADE"),
        nullable=True,
    )

    series: Mapped[str] = mapped_column(String(20), nullable=False)

    prefix: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    suffix: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    separator: Mapped[str] = mapped_column(String(3), nullable=False, default="-")

    include_year: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    include_month: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    start_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def __repr__(self) -> str:
        return f"<InvoiceSeries(id={self.id}, tenant_id={self.tenant_id}, series='{self.series}')>"


class InvoiceNumberSequence(Base, IntegerIdMixin, TimestampMixin):
    """
    Contatore dell'ultimo progressivo assegnato.

    Una riga per (tenant, database, identificativo di serie), dove
    l'identificativo include anno/mese quando la serie li prevede
    (es. "INV-2024"): il progressivo riparte così ad ogni nuovo periodo.
    La riga viene bloccata (SELECT ... FOR UPDATE) durante l'assegnazione.
    """

    __tablename__ = "invoice_number_sequences"
    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "database_id", "series_key",
            name="uq_invoice_number_sequence",
        ),
    )

    tenant_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
    )

    database_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("databases.id", ondelete="CASCADE"),
        nullable=False,
    )

    series_key: Mapped[str] = mapped_column(
        String(60),
        nullable=False,
        doc="Identificativo di serie (es. INV-2024)",
    )

    last_number: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        doc="Ultimo progressivo assegnato",
    )

    def __repr__(self) -> str:
        return (
            f"<InvoiceNumberSequence(series_key='{self.series_key}', "
            f"last_number={self.last_number})>"
        )
