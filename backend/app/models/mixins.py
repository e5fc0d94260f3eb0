"""
Mixin SQLAlchemy per modelli
Progetto: Tabula (Database no-code e Fatturazione)

Mixin riutilizzabili per aggiungere funzionalità comuni ai modelli.
"""

import datetime

from sqlalchemy import DateTime, Integer
from sqlalchemy import event
from sqlalchemy.orm import Mapped, mapped_column, Session
from sqlalchemy.sql import func


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class IntegerIdMixin:
    """
    Mixin per primary key intera autoincrementale.

    Le righe delle tabelle dinamiche sono referenziate per id numerico
    nelle celle (es. riferimento riga fattura → fattura), quindi tutti
    i modelli usano id interi.
    """

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
        doc="Primary key intera",
    )


class TimestampMixin:
    """
    Mixin per gestione automatica timestamp creazione e aggiornamento.

    Aggiunge i campi:
    - created_at: data/ora di creazione record (impostato automaticamente)
    - updated_at: data/ora ultimo aggiornamento (aggiornato automaticamente)

    Usage:
        class MyModel(Base, TimestampMixin):
            __tablename__ = "my_table"
            ...
    """

    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        default=_utcnow,
        nullable=False,
        doc="Data/ora di creazione del record",
    )

    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        default=_utcnow,
        nullable=False,
        doc="Data/ora ultimo aggiornamento del record",
    )


# ------------------------------------------------------------
# Event Listeners
# ------------------------------------------------------------
@event.listens_for(Session, "before_flush")
def update_timestamp(session: Session, flush_context, instances) -> None:
    """
    Aggiorna updated_at sugli oggetti nuovi e su quelli modificati
    prima di ogni flush.
    """
    now = datetime.datetime.now(datetime.timezone.utc)

    for obj in session.dirty:
        if isinstance(obj, TimestampMixin) and session.is_modified(obj, include_collections=False):
            obj.updated_at = now

    for obj in session.new:
        if isinstance(obj, TimestampMixin):
            obj.updated_at = now
