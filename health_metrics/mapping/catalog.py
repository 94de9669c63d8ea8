"""Canonical metric catalog.

Each ``MetricDefinition`` names one canonical metric, its canonical unit, the
aliases providers commonly use for it and the unit conversions accepted on
input. Values in a ``MetricSet`` are always expressed in the canonical unit.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Tuple

# Composite target: "120/80 mmHg" style readings split into systolic/diastolic.
BLOOD_PRESSURE = "BloodPressure"
BLOOD_PRESSURE_SYSTOLIC = "BloodPressureSystolic"
BLOOD_PRESSURE_DIASTOLIC = "BloodPressureDiastolic"
BLOOD_PRESSURE_NAMES = ("blood pressure", "bp")

_MICRO_PREFIX = re.compile(r"(?<![a-zµ])u(?=g|mol|iu|l\b)")


def normalize_unit(unit: Optional[str]) -> str:
    """Return a comparable form of ``unit`` ("mcg/dL" and "µg/dl" compare equal)."""
    if not unit:
        return ""
    normalized = str(unit).strip().lower().replace("μ", "µ").replace("mcg", "µg")
    normalized = re.sub(r"\s+", "", normalized)
    return _MICRO_PREFIX.sub("µ", normalized)


@dataclass(frozen=True)
class MetricDefinition:
    """A canonical metric.

    Attributes:
        name: Canonical identifier (PascalCase, e.g. "FastingGlucose")
        display_name: Human-readable name
        category: Catalog category ("blood", "organs", "vitamins", "custom")
        unit: Canonical unit values are expressed in
        priority: 1 for core panel metrics, higher for less common ones
        subcategory: Organ group for "organs" metrics
        aliases: Raw names providers use for this metric
        conversions: Normalized input unit -> factor to the canonical unit
    """

    name: str
    display_name: str
    category: str
    unit: str
    priority: int = 5
    subcategory: Optional[str] = None
    aliases: Tuple[str, ...] = ()
    conversions: Mapping[str, float] = field(default_factory=lambda: MappingProxyType({}))

    def accepts_unit(self, unit: Optional[str]) -> bool:
        normalized = normalize_unit(unit)
        return not normalized or normalized == normalize_unit(self.unit) or normalized in self.conversions

    def convert(self, value: float, unit: Optional[str]) -> Optional[float]:
        """Return ``value`` in the canonical unit, or None if ``unit`` is unknown."""
        normalized = normalize_unit(unit)
        if not normalized or normalized == normalize_unit(self.unit):
            return value
        factor = self.conversions.get(normalized)
        if factor is None:
            return None
        return round(value * factor, 4)


def _metric(
    name: str,
    display_name: str,
    category: str,
    unit: str,
    priority: int,
    aliases: Tuple[str, ...] = (),
    conversions: Optional[Dict[str, float]] = None,
    subcategory: Optional[str] = None,
) -> MetricDefinition:
    return MetricDefinition(
        name=name,
        display_name=display_name,
        category=category,
        unit=unit,
        priority=priority,
        subcategory=subcategory,
        aliases=aliases,
        conversions=MappingProxyType({normalize_unit(k): v for k, v in (conversions or {}).items()}),
    )


_CHOLESTEROL_MMOL = {"mmol/L": 38.67}
_ELECTROLYTE_MMOL = {"mmol/L": 1.0}
_THOUSAND_PER_UL = {"10^3/µL": 1.0, "x10^3/µL": 1.0, "K/µL": 1.0, "10^9/L": 1.0, "x10^9/L": 1.0}
_MILLION_PER_UL = {"10^6/µL": 1.0, "x10^6/µL": 1.0, "M/µL": 1.0, "10^12/L": 1.0, "x10^12/L": 1.0}

_DEFINITIONS: Tuple[MetricDefinition, ...] = (
    # Cholesterol panel
    _metric("HDLCholesterol", "HDL Cholesterol", "organs", "mg/dL", 1,
            ("hdl", "hdl-c", "high density lipoprotein", "high-density lipoprotein"),
            _CHOLESTEROL_MMOL, "heart"),
    _metric("LDLCholesterol", "LDL Cholesterol", "organs", "mg/dL", 1,
            ("ldl", "ldl-c", "low density lipoprotein", "low-density lipoprotein"),
            _CHOLESTEROL_MMOL, "heart"),
    _metric("TotalCholesterol", "Total Cholesterol", "organs", "mg/dL", 1,
            ("cholesterol", "chol", "cholesterol total"), _CHOLESTEROL_MMOL, "heart"),
    _metric("Triglycerides", "Triglycerides", "organs", "mg/dL", 1,
            ("triglyceride", "tg", "trigs"), {"mmol/L": 88.57}, "heart"),
    _metric("VLDLCholesterol", "VLDL Cholesterol", "organs", "mg/dL", 2,
            ("vldl",), _CHOLESTEROL_MMOL, "heart"),
    _metric("NonHDLCholesterol", "Non-HDL Cholesterol", "organs", "mg/dL", 2,
            ("non hdl cholesterol", "non hdl", "non-hdl"), _CHOLESTEROL_MMOL, "heart"),
    # Thyroid panel
    _metric("TSH", "TSH", "organs", "mIU/L", 1,
            ("thyroid stimulating hormone", "thyrotropin", "tsh - ultrasensitive",
             "tsh ultrasensitive", "tsh-ultrasensitive"),
            {"µIU/mL": 1.0, "mU/L": 1.0}, "thyroid"),
    _metric("T3", "T3", "organs", "ng/dL", 2,
            ("triiodothyronine", "total triiodothyronine", "total triiodothyronine (t3)", "total t3"),
            {"nmol/L": 65.1}, "thyroid"),
    _metric("T4", "T4", "organs", "µg/dL", 2,
            ("thyroxine", "total thyroxine", "total thyroxine (t4)", "total t4"),
            {"nmol/L": 0.0777}, "thyroid"),
    _metric("FreeT3", "Free T3", "organs", "pg/mL", 2,
            ("ft3", "free triiodothyronine"), {"pmol/L": 0.651}, "thyroid"),
    _metric("FreeT4", "Free T4", "organs", "ng/dL", 2,
            ("ft4", "free thyroxine"), {"pmol/L": 0.0777}, "thyroid"),
    # Vitamins and minerals
    _metric("VitaminD", "Vitamin D", "vitamins", "ng/mL", 1,
            ("vit d", "25-hydroxy vitamin d", "25 oh vitamin d", "vitamin d3", "vitamin d total"),
            {"nmol/L": 0.4006}),
    _metric("VitaminB12", "Vitamin B12", "vitamins", "pg/mL", 1,
            ("vit b12", "b12", "cobalamin"), {"pmol/L": 1.355}),
    _metric("VitaminB6", "Vitamin B6", "vitamins", "ng/mL", 3, ("vit b6", "pyridoxine")),
    _metric("Folate", "Folate", "vitamins", "ng/mL", 2, ("folic acid",), {"nmol/L": 0.4413}),
    _metric("Iron", "Iron", "vitamins", "µg/dL", 2, ("fe",), {"µmol/L": 5.585}),
    _metric("Ferritin", "Ferritin", "vitamins", "ng/mL", 2, (), {"µg/L": 1.0}),
    _metric("TIBC", "TIBC", "vitamins", "µg/dL", 3,
            ("total iron binding capacity",), {"µmol/L": 5.585}),
    # Liver function
    _metric("ALT", "ALT", "organs", "U/L", 1,
            ("sgpt", "alanine aminotransferase", "alt sgpt"), {"IU/L": 1.0}, "liver"),
    _metric("AST", "AST", "organs", "U/L", 1,
            ("sgot", "aspartate aminotransferase", "ast sgot"), {"IU/L": 1.0}, "liver"),
    _metric("ALP", "ALP", "organs", "U/L", 2, ("alkaline phosphatase",), {"IU/L": 1.0}, "liver"),
    _metric("Bilirubin", "Bilirubin", "organs", "mg/dL", 1,
            ("total bilirubin", "bilirubin total"), {"µmol/L": 0.05848}, "liver"),
    # Kidney function
    _metric("Creatinine", "Creatinine", "organs", "mg/dL", 1,
            ("creat",), {"µmol/L": 0.01131}, "kidney"),
    _metric("BloodUreaNitrogen", "Blood Urea Nitrogen", "organs", "mg/dL", 1,
            ("bun", "urea nitrogen"), {"mmol/L": 2.801}, "kidney"),
    _metric("UricAcid", "Uric Acid", "organs", "mg/dL", 2, ("urate",), {"µmol/L": 0.01681}, "kidney"),
    _metric("EGFR", "eGFR", "organs", "mL/min/1.73m²", 2,
            ("estimated gfr", "gfr", "egfr"), {"mL/min/1.73m2": 1.0, "mL/min": 1.0}, "kidney"),
    # Blood count
    _metric("Hemoglobin", "Hemoglobin", "blood", "g/dL", 1,
            ("haemoglobin", "hb", "hgb"), {"g/L": 0.1, "mmol/L": 1.611}),
    _metric("Hematocrit", "Hematocrit", "blood", "%", 2, ("hct", "pcv", "packed cell volume")),
    _metric("RBCCount", "RBC Count", "blood", "million/µL", 2,
            ("rbc", "red blood cell count", "red blood cells"), _MILLION_PER_UL),
    _metric("WBCCount", "WBC Count", "blood", "thousand/µL", 2,
            ("wbc", "white blood cell count", "white blood cells", "total leukocyte count", "tlc"),
            _THOUSAND_PER_UL),
    _metric("PlateletCount", "Platelet Count", "blood", "thousand/µL", 2,
            ("platelets", "plt"), _THOUSAND_PER_UL),
    # Diabetes
    _metric("FastingGlucose", "Fasting Glucose", "blood", "mg/dL", 1,
            ("glucose", "blood sugar", "fasting blood sugar", "fbs", "glucose fasting",
             "fasting plasma glucose", "blood glucose"),
            {"mmol/L": 18.016}),
    _metric("HbA1c", "HbA1c", "blood", "%", 1,
            ("a1c", "glycated hemoglobin", "glycosylated hemoglobin", "hemoglobin a1c")),
    # Electrolytes
    _metric("Sodium", "Sodium", "blood", "mEq/L", 2, ("na",), _ELECTROLYTE_MMOL),
    _metric("Potassium", "Potassium", "blood", "mEq/L", 2, ("k",), _ELECTROLYTE_MMOL),
    _metric("Chloride", "Chloride", "blood", "mEq/L", 3, ("cl",), _ELECTROLYTE_MMOL),
    # Cardiac markers
    _metric("Troponin", "Troponin", "organs", "ng/mL", 2,
            ("troponin i", "troponin t"), {"µg/L": 1.0}, "heart"),
    _metric("CKMB", "CK-MB", "organs", "ng/mL", 3, ("ck mb", "ckmb"), {"µg/L": 1.0}, "heart"),
    _metric("BNP", "BNP", "organs", "pg/mL", 3,
            ("b-type natriuretic peptide", "brain natriuretic peptide"), {"ng/L": 1.0}, "heart"),
    # Hormones
    _metric("Testosterone", "Testosterone", "organs", "ng/dL", 3, (), {"nmol/L": 28.84}, "endocrine"),
    _metric("Estrogen", "Estrogen", "organs", "pg/mL", 3, ("estradiol",), {"pmol/L": 0.2724}, "endocrine"),
    _metric("Cortisol", "Cortisol", "organs", "µg/dL", 3, (), {"nmol/L": 0.03625}, "endocrine"),
    _metric("Insulin", "Insulin", "organs", "µIU/mL", 3, ("fasting insulin",), {"mIU/L": 1.0}, "endocrine"),
    # Vitals
    _metric(BLOOD_PRESSURE_SYSTOLIC, "Systolic Blood Pressure", "organs", "mmHg", 1,
            ("systolic", "systolic bp", "sbp", "bp systolic", "blood pressure systolic"), None, "heart"),
    _metric(BLOOD_PRESSURE_DIASTOLIC, "Diastolic Blood Pressure", "organs", "mmHg", 1,
            ("diastolic", "diastolic bp", "dbp", "bp diastolic", "blood pressure diastolic"), None, "heart"),
    _metric("Weight", "Weight", "custom", "kg", 4, ("body weight", "wt"), {"lb": 0.4536, "lbs": 0.4536}),
    _metric("Height", "Height", "custom", "cm", 4, ("ht",), {"m": 100.0, "in": 2.54}),
    _metric("BMI", "BMI", "custom", "kg/m²", 4, ("body mass index",), {"kg/m2": 1.0}),
)

METRIC_CATALOG: Mapping[str, MetricDefinition] = MappingProxyType(
    {definition.name: definition for definition in _DEFINITIONS}
)

# Substring patterns tried in order after exact and alias lookups fail.
FUZZY_PATTERNS: Tuple[Tuple[str, str], ...] = (
    ("non hdl", "NonHDLCholesterol"),
    ("vldl", "VLDLCholesterol"),
    ("hdl", "HDLCholesterol"),
    ("ldl", "LDLCholesterol"),
    ("triglyceride", "Triglycerides"),
    ("cholesterol", "TotalCholesterol"),
    ("a1c", "HbA1c"),
    ("systolic", BLOOD_PRESSURE_SYSTOLIC),
    ("diastolic", BLOOD_PRESSURE_DIASTOLIC),
    ("pressure", BLOOD_PRESSURE),
    ("vitamin", "VitaminD"),
    ("sugar", "FastingGlucose"),
    ("glucose", "FastingGlucose"),
    ("hemoglobin", "Hemoglobin"),
    ("creatinine", "Creatinine"),
    ("bilirubin", "Bilirubin"),
    ("thyroid", "TSH"),
)
