"""
Constants for the perfumery inventory and manufacturing ledger.

This module defines all system-wide constants including:
- Application metadata
- Unit types understood by formula conversion
- Numeric precision used for quantities and costs
- Ledger and manufacturing defaults
"""

from decimal import Decimal
from typing import Dict, List

# ============================================================================
# Application Metadata
# ============================================================================

APP_NAME = "Perfumery Ledger"
APP_VERSION = "0.1.0"
DATABASE_FILENAME = "perfumery_ledger.db"

# ============================================================================
# Units
# ============================================================================

UNIT_MILLILITER = "ml"
UNIT_GRAM = "g"
UNIT_PIECE = "pcs"

# Base units a product may be stocked in
STOCK_BASE_UNITS: List[str] = [
    UNIT_PIECE,  # Bottles, caps, sprayers, labels, kits
    UNIT_GRAM,  # Aroma oils, fixatives weighed on the bench
    UNIT_MILLILITER,  # Ethanol, water, liquid additives
]

# Base units a formula line can be resolved into (percentage -> quantity)
FORMULA_BASE_UNITS: List[str] = [UNIT_MILLILITER, UNIT_GRAM]

# Density used when neither the formula line nor the material declares one (g/ml)
DEFAULT_DENSITY = Decimal("1.0")

# ============================================================================
# Precision
# ============================================================================

# Ledger quantities are quantized before being applied so that the stored
# quantity is always exactly the sum of its movements.
QUANTITY_PRECISION = Decimal("0.0001")
COST_PRECISION = Decimal("0.0001")
PERCENT_PRECISION = Decimal("0.0001")

# ============================================================================
# Manufacturing
# ============================================================================

# Formula percentages must sum to 100 within this tolerance before an order
# may leave DRAFT.
FORMULA_TOTAL_PERCENT = Decimal("100")
FORMULA_PERCENT_TOLERANCE = Decimal("0.01")

DEFAULT_MARKUP_FACTOR = Decimal("3.0")

ORDER_NUMBER_PREFIX = "MO"
BATCH_CODE_PREFIX = "B"

# ============================================================================
# Configuration Defaults
# ============================================================================

DEFAULT_TRANSACTION_TIMEOUT_SECONDS = 30

ENV_VAR_ENVIRONMENT = "PERFUMERY_ENV"
ENV_VAR_MARKUP_FACTOR = "PERFUMERY_MARKUP_FACTOR"
ENV_VAR_ALLOW_NEGATIVE_SALES = "PERFUMERY_ALLOW_NEGATIVE_SALES"
ENV_VAR_DB_TIMEOUT = "PERFUMERY_DB_TIMEOUT"

# Truthy spellings accepted for boolean environment variables
TRUTHY_VALUES = ("1", "true", "yes", "on")

# ============================================================================
# Display
# ============================================================================

UNIT_LABELS: Dict[str, str] = {
    UNIT_PIECE: "pieces",
    UNIT_GRAM: "grams",
    UNIT_MILLILITER: "milliliters",
}

MAX_NAME_LENGTH = 200
MAX_NOTES_LENGTH = 2000
