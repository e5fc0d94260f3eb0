"""
Tipi semantici delle colonne
Progetto: Tabula (Database no-code e Fatturazione)

Un tipo semantico indica cosa rappresenta una colonna (prezzo, IVA,
nome cliente, ...) indipendentemente dal nome scelto dall'utente.
La fatturazione individua le colonne esclusivamente tramite questi tag.
"""

import math
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Iterable, Mapping, Optional

class SemanticColumnType(str, Enum):
    """Tag semantici supportati."""

    # Prodotto
    PRODUCT_NAME = "product_name"
    PRODUCT_DESCRIPTION = "product_description"
    PRODUCT_PRICE = "product_price"
    PRODUCT_VAT = "product_vat"
    PRODUCT_SKU = "product_sku"
    PRODUCT_CATEGORY = "product_category"
    PRODUCT_BRAND = "product_brand"
    PRODUCT_STATUS = "product_status"

    # Cliente
    CUSTOMER_NAME = "customer_name"
    CUSTOMER_EMAIL = "customer_email"
    CUSTOMER_PHONE = "customer_phone"
    CUSTOMER_ADDRESS = "customer_address"
    CUSTOMER_CITY = "customer_city"
    CUSTOMER_STATE = "customer_state"
    CUSTOMER_COUNTRY = "customer_country"
    CUSTOMER_POSTAL_CODE = "customer_postal_code"
    CUSTOMER_TAX_ID = "customer_tax_id"
    CUSTOMER_REGISTRATION_NUMBER = "customer_registration_number"
    CUSTOMER_VAT_NUMBER = "customer_vat_number"
    CUSTOMER_STREET = "customer_street"
    CUSTOMER_STREET_NUMBER = "customer_street_number"

    # Fattura
    INVOICE_ID = "invoice_id"
    INVOICE_NUMBER = "invoice_number"
    INVOICE_DATE = "invoice_date"
    INVOICE_DUE_DATE = "invoice_due_date"
    INVOICE_CUSTOMER_ID = "invoice_customer_id"
    INVOICE_STATUS = "invoice_status"
    INVOICE_TOTAL_AMOUNT = "invoice_total_amount"
    INVOICE_SUBTOTAL = "invoice_subtotal"
    INVOICE_TAX_TOTAL = "invoice_tax_total"
    INVOICE_DISCOUNT_AMOUNT = "invoice_discount_amount"
    INVOICE_SERIES = "invoice_series"
    INVOICE_PAYMENT_TERMS = "invoice_payment_terms"
    INVOICE_PAYMENT_METHOD = "invoice_payment_method"
    INVOICE_LATE_FEE = "invoice_late_fee"
    INVOICE_NOTES = "invoice_notes"
    INVOICE_BASE_CURRENCY = "invoice_base_currency"

    # Quantità e prezzi
    QUANTITY = "quantity"
    UNIT_OF_MEASURE = "unit_of_measure"
    UNIT_PRICE = "unit_price"
    TOTAL_PRICE = "total_price"
    TAX_RATE = "tax_rate"
    TAX_AMOUNT = "tax_amount"
    DISCOUNT_RATE = "discount_rate"
    DISCOUNT_AMOUNT = "discount_amount"

    # Generici
    NAME = "name"
    DESCRIPTION = "description"
    EMAIL = "email"
    PHONE = "phone"
    ADDRESS = "address"
    DATE = "date"
    STATUS = "status"
    PRICE = "price"
    AMOUNT = "amount"
    CODE = "code"
    ID = "id"
    REFERENCE = "reference"
    NOTES = "notes"
    CURRENCY = "currency"

    # Azienda
    COMPANY_NAME = "company_name"
    COMPANY_TAX_ID = "company_tax_id"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["SemanticColumnType"]:
        """Converte una stringa nel tag corrispondente (None se sconosciuto)."""
        if not value:
            return None
        try:
            return cls(value)
        except ValueError:
            return None


# ------------------------------------------------------------
# Mappa colonne per tipo semantico
# ------------------------------------------------------------

@dataclass
class ColumnMap:
    """
    Indice delle colonne di una tabella per tipo semantico e per nome.

    Costruito una sola volta al caricamento della tabella. In caso di più
    colonne con lo stesso tag vince quella con `order` minore.
    """

    by_semantic: dict[SemanticColumnType, Any] = field(default_factory=dict)
    by_name: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_columns(cls, columns: Iterable[Any]) -> "ColumnMap":
        column_map = cls()
        for column in sorted(columns, key=lambda c: (c.order or 0, c.id or 0)):
            column_map.by_name.setdefault(column.name, column)
            semantic = SemanticColumnType.parse(column.semantic_type)
            if semantic is not None:
                column_map.by_semantic.setdefault(semantic, column)
        return column_map

    def get(self, semantic: SemanticColumnType) -> Optional[Any]:
        return self.by_semantic.get(semantic)

    def first(self, *semantics: SemanticColumnType) -> Optional[Any]:
        """Prima colonna presente tra i tag indicati, in ordine di preferenza."""
        for semantic in semantics:
            column = self.by_semantic.get(semantic)
            if column is not None:
                return column
        return None

    def missing(self, required: Iterable[SemanticColumnType]) -> list[SemanticColumnType]:
        """Tag obbligatori senza colonna corrispondente."""
        return [semantic for semantic in required if semantic not in self.by_semantic]

    def __contains__(self, semantic: object) -> bool:
        return semantic in self.by_semantic

    @property
    def columns(self) -> list[Any]:
        return list(self.by_name.values())


# ------------------------------------------------------------
# Conversione valori cella
# ------------------------------------------------------------

def to_decimal(value: Any) -> Optional[Decimal]:
    """
    Converte il valore di una cella in Decimal.

    Accetta int, float, Decimal e stringhe numeriche (anche con virgola).
    Restituisce None per valori vuoti, non numerici o non finiti.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, list):
        value = value[0] if len(value) == 1 else None
        if value is None:
            return None
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        return Decimal(str(value))
    if isinstance(value, (int, Decimal)):
        result = Decimal(value)
    elif isinstance(value, str):
        text = value.strip().replace(",", ".")
        if not text:
            return None
        try:
            result = Decimal(text)
        except InvalidOperation:
            return None
    else:
        return None
    return result if result.is_finite() else None


def to_text(value: Any) -> Optional[str]:
    """Converte il valore di una cella in stringa (None se vuoto)."""
    if value is None:
        return None
    if isinstance(value, list):
        return ", ".join(str(v) for v in value) or None
    text = str(value).strip()
    return text or None


def reference_ids(value: Any) -> list[int]:
    """Id riga contenuti in una cella di tipo reference."""
    if value is None:
        return []
    values = value if isinstance(value, list) else [value]
    ids = []
    for v in values:
        try:
            ids.append(int(v))
        except (TypeError, ValueError):
            continue
    return ids


# ------------------------------------------------------------
# Estrazione dettagli di business da una riga
# ------------------------------------------------------------

# campo → tag in ordine di preferenza
PRODUCT_FIELDS: dict[str, tuple[SemanticColumnType, ...]] = {
    "name": (SemanticColumnType.PRODUCT_NAME, SemanticColumnType.NAME),
    "description": (SemanticColumnType.PRODUCT_DESCRIPTION, SemanticColumnType.DESCRIPTION),
    "price": (
        SemanticColumnType.PRODUCT_PRICE,
        SemanticColumnType.UNIT_PRICE,
        SemanticColumnType.PRICE,
    ),
    "vat": (SemanticColumnType.PRODUCT_VAT, SemanticColumnType.TAX_RATE),
    "currency": (SemanticColumnType.CURRENCY,),
    "sku": (SemanticColumnType.PRODUCT_SKU, SemanticColumnType.CODE),
    "category": (SemanticColumnType.PRODUCT_CATEGORY,),
    "brand": (SemanticColumnType.PRODUCT_BRAND,),
    "unit_of_measure": (SemanticColumnType.UNIT_OF_MEASURE,),
}

CUSTOMER_FIELDS: dict[str, tuple[SemanticColumnType, ...]] = {
    "name": (SemanticColumnType.CUSTOMER_NAME, SemanticColumnType.NAME),
    "email": (SemanticColumnType.CUSTOMER_EMAIL, SemanticColumnType.EMAIL),
    "phone": (SemanticColumnType.CUSTOMER_PHONE, SemanticColumnType.PHONE),
    "tax_id": (
        SemanticColumnType.CUSTOMER_TAX_ID,
        SemanticColumnType.CUSTOMER_VAT_NUMBER,
    ),
    "registration_number": (SemanticColumnType.CUSTOMER_REGISTRATION_NUMBER,),
    "street": (SemanticColumnType.CUSTOMER_STREET,),
    "street_number": (SemanticColumnType.CUSTOMER_STREET_NUMBER,),
    "address": (SemanticColumnType.CUSTOMER_ADDRESS, SemanticColumnType.ADDRESS),
    "city": (SemanticColumnType.CUSTOMER_CITY,),
    "state": (SemanticColumnType.CUSTOMER_STATE,),
    "country": (SemanticColumnType.CUSTOMER_COUNTRY,),
    "postal_code": (SemanticColumnType.CUSTOMER_POSTAL_CODE,),
}

NUMERIC_FIELDS = {"price", "vat"}


def extract_details(
    column_map: ColumnMap,
    values: Mapping[int, Any],
    fields: Mapping[str, tuple[SemanticColumnType, ...]],
) -> dict[str, Any]:
    """
    Legge i campi di business di una riga.

    Args:
        column_map: Colonne della tabella indicizzate per tag
        values: Valori della riga, per column_id
        fields: Mappa campo → tag ammessi (es. PRODUCT_FIELDS)

    Returns:
        dict con un valore (o None) per ogni campo richiesto. I campi
        numerici sono Decimal; il primo tag con un valore non vuoto vince.
    """
    details: dict[str, Any] = {}
    for name, semantics in fields.items():
        details[name] = None
        for semantic in semantics:
            column = column_map.get(semantic)
            if column is None or column.id not in values:
                continue
            raw = values[column.id]
            value = to_decimal(raw) if name in NUMERIC_FIELDS else to_text(raw)
            if value is not None:
                details[name] = value
                break
    return details


def extract_product_details(column_map: ColumnMap, values: Mapping[int, Any]) -> dict[str, Any]:
    """Dettagli prodotto (nome, prezzo, IVA, valuta, ...) da una riga."""
    details = extract_details(column_map, values, PRODUCT_FIELDS)
    if details["currency"]:
        details["currency"] = details["currency"].upper()
    return details


def extract_customer_details(column_map: ColumnMap, values: Mapping[int, Any]) -> dict[str, Any]:
    """Dettagli cliente con indirizzo completo ricostruito dalle parti."""
    details = extract_details(column_map, values, CUSTOMER_FIELDS)
    details["full_address"] = format_address(details)
    return details


def format_address(details: Mapping[str, Any]) -> Optional[str]:
    """
    Indirizzo su una riga: "Via Roma 1, 00100 Roma, IT".

    Se mancano le parti strutturate usa il campo address libero.
    """
    street = " ".join(p for p in (details.get("street"), details.get("street_number")) if p)
    city = " ".join(p for p in (details.get("postal_code"), details.get("city")) if p)
    parts = [p for p in (street, city, details.get("state"), details.get("country")) if p]
    if not street and details.get("address"):
        parts.insert(0, details["address"])
    return ", ".join(parts) or None
