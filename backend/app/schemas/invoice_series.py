"""
Schemas Pydantic per le Serie di Numerazione
Progetto: Tabula (Database no-code e Fatturazione)

Input di creazione e modifica di una serie e schema di lettura.
"""

import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _normalize_series(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    v = v.strip().upper()
    if not v.replace("_", "").isalnum():
        raise ValueError("La serie può contenere solo lettere, cifre e underscore")
    return v


class InvoiceSeriesBase(BaseModel):
    series: str = Field(..., min_length=1, max_length=20, description="Nome della serie (es. INV)")
    prefix: Optional[str] = Field(None, max_length=20, description="Prefisso anteposto alla serie")
    suffix: Optional[str] = Field(None, max_length=20, description="Suffisso in coda al numero")
    separator: str = Field(default="-", min_length=1, max_length=3)
    include_year: bool = Field(default=True, description="Include l'anno di emissione")
    include_month: bool = Field(default=False, description="Include il mese di emissione")
    start_number: int = Field(default=1, ge=1, description="Primo progressivo")
    is_default: bool = Field(default=False, description="Serie predefinita del tenant")

    @field_validator("series")
    @classmethod
    def validate_series(cls, v: str) -> str:
        return _normalize_series(v)


class InvoiceSeriesCreate(InvoiceSeriesBase):
    database_id: Optional[int] = Field(None, gt=0, description="Database logico (default: tutti)")


class InvoiceSeriesUpdate(BaseModel):
    series: Optional[str] = Field(None, min_length=1, max_length=20)
    prefix: Optional[str] = Field(None, max_length=20)
    suffix: Optional[str] = Field(None, max_length=20)
    separator: Optional[str] = Field(None, min_length=1, max_length=3)
    include_year: Optional[bool] = None
    include_month: Optional[bool] = None
    start_number: Optional[int] = Field(None, ge=1)
    is_default: Optional[bool] = None

    @field_validator("series")
    @classmethod
    def validate_series(cls, v: Optional[str]) -> Optional[str]:
        return _normalize_series(v)


class InvoiceSeriesRead(InvoiceSeriesBase):
    model_config = ConfigDict(from_attributes=True)

    id: int
    tenant_id: int
    database_id: Optional[int] = None
    created_at: datetime.datetime
    updated_at: datetime.datetime
