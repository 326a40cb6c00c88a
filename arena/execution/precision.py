"""Order quantity precision per symbol."""
from decimal import ROUND_DOWN, Decimal
from typing import Dict, Optional

import structlog

from arena.core.config import arena_config

logger = structlog.get_logger(__name__)


class PrecisionAdapter:
    """Truncates order quantities to each symbol's quantity precision.

    Quantities are always truncated toward zero so an order never asks for
    more notional than was sized.

    Attributes:
        precisions: Symbol -> decimal places
        default_precision: Used for symbols with no loaded precision
    """

    def __init__(
        self,
        precisions: Optional[Dict[str, int]] = None,
        default_precision: Optional[int] = None,
    ):
        self.precisions: Dict[str, int] = dict(precisions or {})
        self.default_precision = (
            default_precision if default_precision is not None
            else arena_config.default_quantity_precision
        )

    def load(self, precisions: Dict[str, int]) -> None:
        """Merge precisions fetched from venue metadata."""
        self.precisions.update(precisions)
        logger.info("precision.loaded", symbols=len(self.precisions))

    def precision_for(self, symbol: str) -> int:
        return self.precisions.get(symbol, self.default_precision)

    def adjust(self, symbol: str, quantity: Decimal) -> Decimal:
        """Truncate ``quantity`` toward zero to the symbol's precision.

        Args:
            symbol: Venue symbol id
            quantity: Raw quantity

        Returns:
            Truncated quantity (never larger in magnitude than the input)
        """
        digits = self.precision_for(symbol)
        step = Decimal(1).scaleb(-digits)
        return Decimal(quantity).quantize(step, rounding=ROUND_DOWN)
