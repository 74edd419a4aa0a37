"""Fixed IP unit conversion table used when writing results into the audit document."""

from __future__ import annotations

import logging
from typing import Dict, Optional, Tuple

logger = logging.getLogger(__name__)

KWH_TO_KBTU = 3.4121416331
THERM_TO_KBTU = 100.0

# Each unit maps to (dimension, factor to the dimension's base unit).
UNIT_TABLE: Dict[str, Tuple[str, float]] = {
    "Btu": ("energy", 1.0),
    "kBtu": ("energy", 1_000.0),
    "MMBtu": ("energy", 1_000_000.0),
    "kWh": ("energy", KWH_TO_KBTU * 1_000.0),
    "MWh": ("energy", KWH_TO_KBTU * 1_000_000.0),
    "therms": ("energy", THERM_TO_KBTU * 1_000.0),
    "Btu/ft^2": ("intensity", 1.0),
    "kBtu/ft^2": ("intensity", 1_000.0),
    "MMBtu/ft^2": ("intensity", 1_000_000.0),
    "W": ("power", 1.0),
    "kW": ("power", 1_000.0),
}


def convert(value: Optional[float], from_unit: str, to_unit: str) -> Optional[float]:
    if value is None:
        return None
    if from_unit == to_unit:
        return float(value)
    source = UNIT_TABLE.get(from_unit)
    target = UNIT_TABLE.get(to_unit)
    if source is None or target is None or source[0] != target[0]:
        logger.error("No conversion defined from %s to %s", from_unit, to_unit)
        return None
    return float(value) * source[1] / target[1]
