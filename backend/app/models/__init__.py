"""
Modelli Database SQLAlchemy
Progetto: Tabula (Database no-code e Fatturazione)

Import centralizzato di tutti i modelli per create_all e usage generico.

Modelli:
- Tenant, Database: Organizzazioni e database logici
- Table, Column, Row, Cell: Tabelle dinamiche definite dall'utente
- InvoiceSeries, InvoiceNumberSequence: Numerazione fatture
"""

# SQLAlchemy 2.0 Base declarativa
# Importato qui per essere disponibile per tutti i modelli
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class per tutti i modelli SQLAlchemy."""
    pass


from app.models.tenant import Database, Tenant
from app.models.table import Cell, Column, Row, Table
from app.models.invoice import InvoiceNumberSequence, InvoiceSeries

__all__ = [
    "Base",
    "Tenant",
    "Database",
    "Table",
    "Column",
    "Row",
    "Cell",
    "InvoiceSeries",
    "InvoiceNumberSequence",
]
