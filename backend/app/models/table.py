"""
Modelli SQLAlchemy per le tabelle dinamiche
Progetto: Tabula (Database no-code e Fatturazione)

Contiene:
- Table: Tabella definita dall'utente (o protetta, per la fatturazione)
- Column: Colonna tipizzata con eventuale tipo semantico
- Row: Record di una tabella
- Cell: Valore di una colonna per una riga (JSON)

I valori non sono tipizzati a livello di database: ogni cella contiene
un valore JSON (stringa, numero, booleano, data ISO o lista di id riga
per i riferimenti).
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models import Base
from app.models.mixins import IntegerIdMixin, TimestampMixin

if TYPE_CHECKING:
    from app.models.tenant import Database


# JSONB su PostgreSQL, JSON generico altrove (SQLite nei test)
CellValueType = JSON().with_variant(JSONB(), "postgresql")


class Table(Base, IntegerIdMixin, TimestampMixin):
    """
    Tabella dinamica di un database logico.

    Attributes:
        database_id: Database logico di appartenenza
        name: Nome visualizzato (es. "invoices")
        description: Descrizione opzionale
        is_protected: True per le tabelle gestite dal sistema
        protected_type: customers | invoices | invoice_items
    """

    __tablename__ = "tables"

    database_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("databases.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        doc="Database logico di appartenenza",
    )

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        doc="Nome della tabella",
    )

    description: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        doc="Descrizione della tabella",
    )

    is_protected: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        doc="Tabella di sistema non eliminabile dall'utente",
    )

    protected_type: Mapped[Optional[str]] = mapped_column(
        String(50),
        nullable=True,
        doc="Ruolo della tabella protetta (customers, invoices, invoice_items)",
    )

    database: Mapped["Database"] = relationship("Database", back_populates="tables")

    columns: Mapped[List["Column"]] = relationship(
        "Column",
        back_populates="table",
        cascade="all, delete-orphan",
        order_by="Column.order",
        foreign_keys="Column.table_id",
    )

    rows: Mapped[List["Row"]] = relationship(
        "Row",
        back_populates="table",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Table(id={self.id}, name='{self.name}', protected_type={self.protected_type})>"


class Column(Base, IntegerIdMixin, TimestampMixin):
    """
    Colonna di una tabella dinamica.

    Il tipo semantico (semantic_type) dà significato di business alla
    colonna indipendentemente dal nome scelto dall'utente.
    """

    __tablename__ = "columns"

    table_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("tables.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    type: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        default="string",
        doc="Tipo dato: string, number, date, reference, boolean",
    )

    semantic_type: Mapped[Optional[str]] = mapped_column(
        String(60),
        nullable=True,
        index=True,
        doc="Tag semantico (vedi SemanticColumnType)",
    )

    required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    is_locked: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        doc="Colonna predefinita non modificabile dall'utente",
    )

    reference_table_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("tables.id", ondelete="SET NULL"),
        nullable=True,
        doc="Tabella referenziata per le colonne di tipo reference",
    )

    table: Mapped["Table"] = relationship(
        "Table",
        back_populates="columns",
        foreign_keys=[table_id],
    )

    def __repr__(self) -> str:
        return f"<Column(id={self.id}, name='{self.name}', semantic_type={self.semantic_type})>"


class Row(Base, IntegerIdMixin, TimestampMixin):
    """Record di una tabella dinamica."""

    __tablename__ = "rows"

    table_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("tables.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    table: Mapped["Table"] = relationship("Table", back_populates="rows")

    cells: Mapped[List["Cell"]] = relationship(
        "Cell",
        back_populates="row",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Row(id={self.id}, table_id={self.table_id})>"


class Cell(Base, IntegerIdMixin):
    """
    Valore di una colonna per una riga.

    Esiste al più una cella per coppia (riga, colonna).
    """

    __tablename__ = "cells"
    __table_args__ = (
        UniqueConstraint("row_id", "column_id", name="uq_cell_row_column"),
    )

    row_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("rows.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    column_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("columns.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    value: Mapped[Any] = mapped_column(CellValueType, nullable=True)

    row: Mapped["Row"] = relationship("Row", back_populates="cells")

    def __repr__(self) -> str:
        return f"<Cell(row_id={self.row_id}, column_id={self.column_id}, value={self.value!r})>"
