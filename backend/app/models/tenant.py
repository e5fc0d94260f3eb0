"""
Modelli SQLAlchemy per Tenant e Database logici
Progetto: Tabula (Database no-code e Fatturazione)

Contiene:
- Tenant: Organizzazione proprietaria dei dati
- Database: Contenitore logico di tabelle definite dall'utente
"""

from __future__ import annotations

from typing import TYPE_CHECKING, List

from sqlalchemy import Boolean, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models import Base
from app.models.mixins import IntegerIdMixin, TimestampMixin

if TYPE_CHECKING:
    from app.models.table import Table


class Tenant(Base, IntegerIdMixin, TimestampMixin):
    """
    Modello per i tenant.

    Oltre all'anagrafica, porta i default di fatturazione usati quando
    non esiste una serie configurata esplicitamente.

    Attributes:
        name: Nome dell'organizzazione
        default_currency: Valuta di base delle fatture (ISO 4217)
        invoice_series_prefix: Serie di default (es. "INV")
        invoice_include_year: Include l'anno nel numero fattura
        invoice_start_number: Primo progressivo di ogni serie nuova
    """

    __tablename__ = "tenants"

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        doc="Nome del tenant",
    )

    default_currency: Mapped[str] = mapped_column(
        String(3),
        nullable=False,
        default="USD",
        doc="Valuta di base (ISO 4217)",
    )

    invoice_series_prefix: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="INV",
        doc="Serie di numerazione di default",
    )

    invoice_include_year: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        doc="Include l'anno nel numero fattura",
    )

    invoice_start_number: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1,
        doc="Primo progressivo della serie",
    )

    databases: Mapped[List["Database"]] = relationship(
        "Database",
        back_populates="tenant",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Tenant(id={self.id}, name='{self.name}')>"


class Database(Base, IntegerIdMixin, TimestampMixin):
    """
    Database logico di un tenant.

    Un tenant può avere più database; quello con is_default=True è usato
    quando la richiesta non ne specifica uno.
    """

    __tablename__ = "databases"

    tenant_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        doc="Tenant proprietario",
    )

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        doc="Nome del database",
    )

    is_default: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        doc="Database predefinito del tenant",
    )

    tenant: Mapped["Tenant"] = relationship("Tenant", back_populates="databases")

    tables: Mapped[List["Table"]] = relationship(
        "Table",
        back_populates="database",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Database(id={self.id}, tenant_id={self.tenant_id}, name='{self.name}')>"
