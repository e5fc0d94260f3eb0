"""
Service Layer per il Calcolo dei Totali Fattura
Progetto: Tabula (Database no-code e Fatturazione)

Calcolo puro (nessun accesso al database) di imponibile, IVA e totale
di una fattura multi-riga e multi-valuta.

Regole:
- totale riga = quantità × prezzo unitario × tasso di cambio verso la valuta di base
- IVA riga = totale riga × aliquota / 100
- le somme sono a precisione piena; imponibile e IVA sono arrotondati
  (ROUND_HALF_UP, 2 decimali) solo alla fine
- totale = imponibile + IVA − sconto + mora, calcolato sui valori arrotondati
"""

import logging
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Iterable, Mapping, Optional, Union

from app.core.exceptions import BusinessValidationError
from app.schemas.invoice import (
    CalculationConfig,
    CalculationItem,
    InvoiceTotals,
    LineTotals,
    VatBreakdownEntry,
)

# Logger per questo modulo
logger = logging.getLogger(__name__)

TWO_PLACES = Decimal("0.01")
ONE = Decimal("1")
HUNDRED = Decimal("100")


def quantize_money(value: Decimal) -> Decimal:
    """Arrotonda un importo a 2 decimali (ROUND_HALF_UP)."""
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


class InvoiceCalculationService:
    """
    Service per il calcolo dei totali fattura.

    Stateless: può essere istanziato una volta a livello di modulo.
    """

    def get_exchange_rate(
        self,
        currency: Optional[str],
        base_currency: str,
        exchange_rates: Mapping[str, Decimal],
    ) -> Decimal:
        """
        Tasso per convertire un importo da `currency` alla valuta di base.

        Vale 1 per la stessa valuta e, con un avviso nel log, quando il
        tasso non è disponibile.
        """
        if not currency or currency == base_currency:
            return ONE
        rate = exchange_rates.get(currency)
        if rate is None or rate <= 0:
            logger.warning(
                "Tasso di cambio %s→%s non disponibile, uso 1",
                currency, base_currency,
            )
            return ONE
        return rate

    def calculate_invoice_totals(
        self,
        items: Iterable[Union[CalculationItem, Mapping[str, Any]]],
        config: Union[CalculationConfig, Mapping[str, Any]],
    ) -> InvoiceTotals:
        """
        Calcola i totali di una fattura.

        Args:
            items: Righe (quantità, prezzo unitario, aliquota IVA, valuta)
            config: Valuta di base, tassi di cambio, sconto e mora

        Returns:
            InvoiceTotals con totali arrotondati, dettaglio per riga,
            totali per valuta originale e riepilogo IVA per aliquota

        Raises:
            BusinessValidationError: Importi oltre la precisione decimale gestibile
        """
        try:
            return self._calculate(items, config)
        except InvalidOperation:
            logger.warning("Importi fuori scala, calcolo dei totali non possibile")
            raise BusinessValidationError(
                "Importi fuori scala: impossibile calcolare i totali della fattura"
            )

    def _calculate(
        self,
        items: Iterable[Union[CalculationItem, Mapping[str, Any]]],
        config: Union[CalculationConfig, Mapping[str, Any]],
    ) -> InvoiceTotals:
        if not isinstance(config, CalculationConfig):
            config = CalculationConfig.model_validate(config)
        base_currency = config.base_currency

        subtotal = Decimal("0")
        vat_total = Decimal("0")
        lines: list[LineTotals] = []
        totals_by_currency: dict[str, Decimal] = {}
        vat_groups: dict[Decimal, list[Decimal]] = {}

        for item in items:
            if not isinstance(item, CalculationItem):
                item = CalculationItem.model_validate(item)

            currency = item.currency or base_currency
            rate = self.get_exchange_rate(currency, base_currency, config.exchange_rates)

            original_total = item.quantity * item.unit_price
            line_total = original_total * rate
            tax_amount = line_total * item.vat_rate / HUNDRED

            subtotal += line_total
            vat_total += tax_amount

            totals_by_currency[currency] = totals_by_currency.get(currency, Decimal("0")) + original_total

            group = vat_groups.setdefault(quantize_money(item.vat_rate), [Decimal("0"), Decimal("0")])
            group[0] += line_total
            group[1] += tax_amount

            lines.append(
                LineTotals(
                    currency=currency,
                    exchange_rate=rate,
                    line_total=quantize_money(line_total),
                    tax_amount=quantize_money(tax_amount),
                    original_total=quantize_money(original_total),
                )
            )

        subtotal = quantize_money(subtotal)
        vat_total = quantize_money(vat_total)
        discount = quantize_money(config.discount_amount)
        late_fee = quantize_money(config.late_fee)
        grand_total = quantize_money(subtotal + vat_total - discount + late_fee)

        return InvoiceTotals(
            base_currency=base_currency,
            subtotal=subtotal,
            vat_total=vat_total,
            discount_amount=discount,
            late_fee=late_fee,
            grand_total=grand_total,
            lines=lines,
            totals_by_currency={
                currency: quantize_money(total)
                for currency, total in totals_by_currency.items()
            },
            vat_breakdown=[
                VatBreakdownEntry(
                    vat_rate=vat_rate,
                    taxable_amount=quantize_money(taxable),
                    vat_amount=quantize_money(tax),
                )
                for vat_rate, (taxable, tax) in sorted(vat_groups.items())
            ],
        )


invoice_calculation_service = InvoiceCalculationService()
