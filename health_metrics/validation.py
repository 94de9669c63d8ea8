"""Reference ranges and plausibility checks for canonical metrics.

Ranges are expressed in each metric's canonical unit. ``classify_status``
follows the usual lab-report convention: a value at or beyond a critical bound
is ``high`` (concerning, in either direction), at or beyond a warning bound or
outside the normal range is ``borderline``, otherwise ``normal``.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping, Optional, Tuple


@dataclass(frozen=True)
class ReferenceRange:
    """Normal, warning and critical bounds for one metric."""

    min: Optional[float] = None
    max: Optional[float] = None
    warning_low: Optional[float] = None
    warning_high: Optional[float] = None
    critical_low: Optional[float] = None
    critical_high: Optional[float] = None


def _range(low=None, high=None, warning_low=None, warning_high=None, critical_low=None, critical_high=None):
    return ReferenceRange(low, high, warning_low, warning_high, critical_low, critical_high)


REFERENCE_RANGES: Mapping[str, ReferenceRange] = MappingProxyType(
    {
        # Cholesterol panel
        "HDLCholesterol": _range(40, 60, warning_low=35, critical_low=25),
        "LDLCholesterol": _range(0, 100, warning_high=130, critical_high=190),
        "TotalCholesterol": _range(125, 200, warning_high=240, critical_high=300),
        "Triglycerides": _range(0, 150, warning_high=200, critical_high=500),
        "VLDLCholesterol": _range(5, 40, warning_high=50, critical_high=100),
        # Thyroid
        "TSH": _range(0.4, 4.0, 0.1, 6.0, 0.01, 10.0),
        "T3": _range(80, 200, 70, 220),
        "T4": _range(5.1, 14.1, 4.5, 15.0),
        "FreeT3": _range(2.0, 4.4, 1.8, 5.0),
        "FreeT4": _range(0.82, 1.77, 0.7, 2.0),
        # Vitamins
        "VitaminD": _range(30, 100, warning_low=20, critical_low=12, critical_high=150),
        "VitaminB12": _range(200, 900, warning_low=300, critical_low=200),
        "Folate": _range(2.7, 17.0, warning_low=3.0, critical_low=2.0),
        "Iron": _range(60, 170, 50, 200, 30, 300),
        "Ferritin": _range(12, 300, 15, 400, 10, 1000),
        # Blood count
        "Hemoglobin": _range(12.0, 17.5, 11.0, 18.0, 8.0, 20.0),
        "Hematocrit": _range(36, 52, 32, 54, 28, 60),
        "RBCCount": _range(4.5, 5.5, 4.0, 6.0, 3.5, 7.0),
        "WBCCount": _range(4.5, 11.0, 4.0, 12.0, 2.0, 20.0),
        "PlateletCount": _range(150, 450, 100, 500, 50, 1000),
        # Glucose
        "FastingGlucose": _range(70, 99, 65, 125, 55, 180),
        "HbA1c": _range(4.0, 5.6, warning_high=6.4, critical_high=10.0),
        # Liver
        "ALT": _range(7, 40, warning_high=50, critical_high=200),
        "AST": _range(8, 40, warning_high=50, critical_high=200),
        "ALP": _range(44, 147, warning_high=200, critical_high=400),
        "Bilirubin": _range(0.1, 1.2, warning_high=2.0, critical_high=5.0),
        # Kidney
        "Creatinine": _range(0.7, 1.3, warning_high=1.5, critical_high=2.0),
        "BloodUreaNitrogen": _range(7, 20, warning_high=25, critical_high=50),
        "UricAcid": _range(3.4, 7.0, warning_high=8.0, critical_high=10.0),
        "EGFR": _range(90, 120, warning_low=60, critical_low=30),
        # Electrolytes
        "Sodium": _range(136, 145, 135, 146, 130, 150),
        "Potassium": _range(3.5, 5.0, 3.3, 5.2, 3.0, 6.0),
        "Chloride": _range(98, 107, 96, 109, 90, 115),
        # Cardiac markers
        "Troponin": _range(0, 0.04, warning_high=0.1, critical_high=2.0),
        "CKMB": _range(0, 3.0, warning_high=5.0, critical_high=10.0),
        "BNP": _range(0, 100, warning_high=300, critical_high=900),
        # Hormones
        "Testosterone": _range(300, 1000, warning_low=250, critical_low=150),
        "Estrogen": _range(15, 350, 10, 400),
        "Cortisol": _range(6.2, 19.4, 5.0, 23.0, 3.0, 30.0),
        "Insulin": _range(2.6, 24.9, warning_high=30.0, critical_high=50.0),
        # Blood pressure
        "BloodPressureSystolic": _range(90, 120, warning_high=130, critical_low=70, critical_high=180),
        "BloodPressureDiastolic": _range(60, 80, warning_high=90, critical_low=40, critical_high=120),
        # Body measurements
        "BMI": _range(18.5, 24.9, 17.0, 30.0, 15.0, 40.0),
    }
)

# Values outside these bounds are treated as extraction errors and dropped.
PLAUSIBILITY_LIMITS: Mapping[str, Tuple[float, float]] = MappingProxyType(
    {
        "HDLCholesterol": (5, 200),
        "LDLCholesterol": (10, 500),
        "TotalCholesterol": (50, 800),
        "Triglycerides": (10, 5000),
        "FastingGlucose": (20, 800),
        "HbA1c": (2, 20),
        "Hemoglobin": (3, 25),
        "Hematocrit": (10, 75),
        "Creatinine": (0.1, 15),
        "TSH": (0.01, 200),
        "VitaminD": (1, 300),
        "Sodium": (100, 200),
        "Potassium": (1, 10),
        "BloodPressureSystolic": (50, 300),
        "BloodPressureDiastolic": (20, 200),
        "Weight": (0.5, 500),
        "Height": (30, 280),
        "BMI": (5, 100),
    }
)


def get_reference_range(name: str) -> Optional[ReferenceRange]:
    return REFERENCE_RANGES.get(name)


def is_plausible(name: str, value: float) -> bool:
    """Return True when ``value`` is a believable reading for metric ``name``."""
    if value is None or isinstance(value, bool) or not math.isfinite(value):
        return False
    limits = PLAUSIBILITY_LIMITS.get(name)
    if limits is None:
        return value >= 0
    low, high = limits
    return low <= value <= high


def classify_status(name: str, value: float) -> Optional[str]:
    """Classify ``value`` as "normal", "borderline" or "high".

    Returns None when no reference range exists for ``name``.
    """
    ranges = REFERENCE_RANGES.get(name)
    if ranges is None:
        return None

    if ranges.critical_low is not None and value <= ranges.critical_low:
        return "high"
    if ranges.critical_high is not None and value >= ranges.critical_high:
        return "high"
    if ranges.warning_low is not None and value <= ranges.warning_low:
        return "borderline"
    if ranges.warning_high is not None and value >= ranges.warning_high:
        return "borderline"
    if ranges.min is not None and ranges.max is not None and not ranges.min <= value <= ranges.max:
        return "borderline"
    return "normal"
