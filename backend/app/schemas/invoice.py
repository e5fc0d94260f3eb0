"""
Schemas Pydantic per la Fatturazione
Progetto: Tabula (Database no-code e Fatturazione)

Contiene:
- Enums: InvoiceStatus
- Schemas di input per la creazione fattura (prodotti inclusi) e il cambio di stato
- Schemas per il calcolo dei totali
- Schemas di risposta (creazione, lista, dettaglio, statistiche numerazione)
"""

import datetime
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_validator,
    model_validator,
)

from app.core.exceptions import BusinessValidationError
from app.core.semantic_types import to_decimal

# Limiti degli importi accettati in input
MAX_QUANTITY = Decimal("1000000")
MAX_AMOUNT = Decimal("1000000000")
MAX_EXCHANGE_RATE = Decimal("1000000")


# -------------------------------------------------------------------
# Enum
# -------------------------------------------------------------------

class InvoiceStatus(str, Enum):
    """Stato della fattura."""
    DRAFT = "draft"
    ISSUED = "issued"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


def normalize_currency(v: Optional[str]) -> Optional[str]:
    """Valida e normalizza un codice valuta ISO 4217."""
    if v is None:
        return v
    v = v.strip().upper()
    if len(v) != 3 or not v.isalpha():
        raise ValueError("Il codice valuta deve essere composto da 3 lettere")
    return v


# -------------------------------------------------------------------
# Schemas di input
# -------------------------------------------------------------------

class InvoiceProductInput(BaseModel):
    """Prodotto da fatturare, riferito a una riga di una tabella utente."""

    product_ref_table: str = Field(
        ...,
        min_length=1,
        description="Nome (o id) della tabella prodotti",
    )
    product_ref_id: int = Field(
        ...,
        gt=0,
        description="Id della riga prodotto",
    )
    quantity: Decimal = Field(..., gt=0, le=MAX_QUANTITY, description="Quantità")
    price: Optional[Decimal] = Field(
        None,
        ge=0,
        le=MAX_AMOUNT,
        description="Prezzo unitario (se assente si usa quello del prodotto)",
    )
    currency: Optional[str] = Field(None, description="Valuta del prezzo")
    vat_rate: Optional[Decimal] = Field(
        None,
        ge=0,
        le=100,
        description="Aliquota IVA in percentuale",
    )
    unit_of_measure: Optional[str] = Field(None, max_length=30)
    description: Optional[str] = Field(None, max_length=1000)

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v: Optional[str]) -> Optional[str]:
        return normalize_currency(v)


class InvoiceCreate(BaseModel):
    """
    Schema per la creazione di una fattura.

    La data di scadenza non può essere nel passato né precedente alla
    data di emissione; serve almeno un prodotto.
    """

    customer_id: int = Field(..., gt=0, description="Id della riga cliente")
    base_currency: str = Field(..., description="Valuta della fattura (ISO 4217)")
    due_date: date = Field(..., description="Data di scadenza")
    payment_method: str = Field(..., min_length=1, max_length=100)
    invoice_date: Optional[date] = Field(
        None,
        description="Data di emissione (default: oggi)",
    )
    payment_terms: Optional[str] = Field(None, max_length=255)
    notes: Optional[str] = Field(None, max_length=2000)
    status: InvoiceStatus = Field(default=InvoiceStatus.DRAFT)
    invoice_series: Optional[str] = Field(
        None,
        min_length=1,
        max_length=20,
        description="Serie di numerazione (default: serie del tenant)",
    )
    additional_data: dict[str, Any] = Field(
        default_factory=dict,
        description="Valori per colonne personalizzate della tabella fatture, per nome",
    )
    discount_amount: Decimal = Field(default=Decimal("0"), ge=0, le=MAX_AMOUNT)
    late_fee: Decimal = Field(default=Decimal("0"), ge=0, le=MAX_AMOUNT)
    exchange_rates: dict[str, Decimal] = Field(
        default_factory=dict,
        description="Tassi verso la valuta di base ({'EUR': 1.1})",
    )
    products: list[InvoiceProductInput] = Field(default_factory=list, validate_default=True)

    @field_validator("base_currency")
    @classmethod
    def validate_base_currency(cls, v: str) -> str:
        return normalize_currency(v)

    @field_validator("due_date")
    @classmethod
    def validate_due_date(cls, v: date) -> date:
        if v < date.today():
            raise ValueError("La data di scadenza non può essere nel passato")
        return v

    @field_validator("exchange_rates")
    @classmethod
    def validate_exchange_rates(cls, v: dict[str, Decimal]) -> dict[str, Decimal]:
        rates = {}
        for currency, rate in v.items():
            if rate <= 0:
                raise ValueError(f"Il tasso di cambio per {currency} deve essere positivo")
            if rate > MAX_EXCHANGE_RATE:
                raise ValueError(f"Il tasso di cambio per {currency} è fuori scala")
            rates[normalize_currency(currency)] = rate
        return rates

    @field_validator("products")
    @classmethod
    def validate_products(cls, v: list[InvoiceProductInput]) -> list[InvoiceProductInput]:
        if not v:
            raise BusinessValidationError("È richiesto almeno un prodotto")
        return v

    @model_validator(mode="after")
    def validate_dates(self) -> "InvoiceCreate":
        if self.invoice_date and self.due_date < self.invoice_date:
            raise BusinessValidationError(
                "La data di scadenza non può precedere la data di emissione"
            )
        return self


class InvoiceStatusUpdate(BaseModel):
    """Aggiornamento dello stato di una fattura (unico campo modificabile)."""

    status: InvoiceStatus = Field(..., description="Nuovo stato della fattura")


# -------------------------------------------------------------------
# Schemas per il calcolo dei totali
# -------------------------------------------------------------------

class CalculationItem(BaseModel):
    """
    Riga da totalizzare.

    I valori numerici non validi (None, NaN, infinito, testo) valgono 0:
    il calcolo lavora anche su dati letti dalle celle.
    """

    quantity: Decimal = Decimal("0")
    unit_price: Decimal = Decimal("0")
    vat_rate: Decimal = Decimal("0")
    currency: Optional[str] = None

    @field_validator("quantity", "unit_price", "vat_rate", mode="before")
    @classmethod
    def coerce_number(cls, v: Any) -> Decimal:
        value = to_decimal(v)
        return value if value is not None else Decimal("0")


class CalculationConfig(BaseModel):
    """Parametri del calcolo: valuta di base, cambi, sconto e mora."""

    base_currency: str
    exchange_rates: dict[str, Decimal] = Field(default_factory=dict)
    discount_amount: Decimal = Decimal("0")
    late_fee: Decimal = Decimal("0")

    @field_validator("discount_amount", "late_fee", mode="before")
    @classmethod
    def coerce_number(cls, v: Any) -> Decimal:
        value = to_decimal(v)
        return value if value is not None else Decimal("0")


class LineTotals(BaseModel):
    """Totali di una riga, convertiti nella valuta di base."""

    currency: str
    exchange_rate: Decimal
    line_total: Decimal
    tax_amount: Decimal
    original_total: Decimal


class VatBreakdownEntry(BaseModel):
    """Imponibile e imposta per aliquota IVA."""

    vat_rate: Decimal
    taxable_amount: Decimal
    vat_amount: Decimal


class InvoiceTotals(BaseModel):
    """Risultato del calcolo, importi arrotondati a 2 decimali."""

    base_currency: str
    subtotal: Decimal
    vat_total: Decimal
    discount_amount: Decimal
    late_fee: Decimal
    grand_total: Decimal
    lines: list[LineTotals] = Field(default_factory=list)
    totals_by_currency: dict[str, Decimal] = Field(default_factory=dict)
    vat_breakdown: list[VatBreakdownEntry] = Field(default_factory=list)


# -------------------------------------------------------------------
# Schemas di risposta
# -------------------------------------------------------------------

class InvoiceCreationResponse(BaseModel):
    """Riepilogo della fattura appena creata."""

    id: int
    invoice_number: str
    invoice_series: str
    invoice_date: date
    due_date: date
    status: InvoiceStatus
    customer_id: int
    customer_name: Optional[str] = None
    item_ids: list[int]
    base_currency: str
    subtotal: Decimal
    vat_total: Decimal
    discount_amount: Decimal
    late_fee: Decimal
    grand_total: Decimal
    totals_by_currency: dict[str, Decimal] = Field(default_factory=dict)
    vat_breakdown: list[VatBreakdownEntry] = Field(default_factory=list)
    warnings: list[str] = Field(
        default_factory=list,
        description="Avvisi non bloccanti (cliente o prodotti non trovati)",
    )

    @computed_field
    @property
    def items_count(self) -> int:
        """Numero di righe create."""
        return len(self.item_ids)


class NumberingStats(BaseModel):
    """Statistiche di numerazione delle fatture di un database."""

    total_invoices: int = 0
    last_invoice_number: Optional[str] = None
    next_invoice_number: Optional[str] = None
    series_breakdown: dict[str, int] = Field(default_factory=dict)
    yearly_stats: dict[str, int] = Field(default_factory=dict)
    monthly_stats: dict[str, int] = Field(default_factory=dict)
    totals_by_currency: dict[str, Decimal] = Field(default_factory=dict)


class NextInvoiceNumber(BaseModel):
    """Anteprima del prossimo numero (nessun progressivo consumato)."""

    series: str
    invoice_number: str


class InvoiceRowRead(BaseModel):
    """Riga di tabella dinamica con i valori indicizzati per nome colonna."""

    id: int
    created_at: Optional[datetime.datetime] = None
    data: dict[str, Any] = Field(default_factory=dict)


class InvoiceListItem(InvoiceRowRead):
    """Fattura in lista, arricchita con i dati del cliente."""

    invoice_number: Optional[str] = None
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_address: Optional[str] = None


class InvoiceList(BaseModel):
    """Lista paginata di fatture con statistiche di numerazione."""

    invoices: list[InvoiceListItem]
    total: int
    page: int
    per_page: int
    stats: NumberingStats

    @computed_field
    @property
    def pages(self) -> int:
        if self.per_page <= 0:
            return 0
        return (self.total + self.per_page - 1) // self.per_page


class InvoiceDetail(InvoiceRowRead):
    """Fattura con righe e cliente."""

    invoice_number: Optional[str] = None
    customer: Optional[dict[str, Any]] = None
    items: list[InvoiceRowRead] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)
