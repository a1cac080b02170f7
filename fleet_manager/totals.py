"""Soma dos itens (quantidade × custo unitário) e detecção de divergência."""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Iterable, Tuple

CENT = Decimal("0.01")
ZERO = Decimal("0")


def to_decimal(value: Any) -> Decimal:
    """
    Converte valores gravados (Decimal, número ou texto) em Decimal.
    Nulo, vazio ou não numérico vale 0.
    """
    if value is None or isinstance(value, bool):
        return ZERO
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            return ZERO
    if not result.is_finite():
        return ZERO
    return result


def line_total(items: Iterable[Tuple[Any, Any]]) -> Decimal:
    """Σ quantidade × custo unitário, arredondado a 2 casas só no final."""
    total = sum(
        (to_decimal(quantity) * to_decimal(unit_cost) for quantity, unit_cost in items),
        ZERO,
    )
    return total.quantize(CENT, rounding=ROUND_HALF_UP)


def has_drift(stored: Any, computed: Decimal, tolerance: Decimal = CENT) -> bool:
    return abs(to_decimal(stored) - computed) > tolerance
