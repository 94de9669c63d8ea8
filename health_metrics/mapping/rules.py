"""Per-provider mapping rules.

Providers agree on the ``key_findings`` list requested by the shared prompt,
but each model family also tends to emit its own top-level fields (Claude's
``bp_sys``/``bp_dia``, for example). The rules below translate those fields to
canonical metric names.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, Mapping, Tuple

from .catalog import BLOOD_PRESSURE, BLOOD_PRESSURE_DIASTOLIC, BLOOD_PRESSURE_SYSTOLIC


@dataclass(frozen=True)
class ProviderMappingRules:
    """How to read one provider's raw payload.

    Attributes:
        provider_name: Provider the rules apply to
        field_aliases: Lowercased top-level payload key -> canonical metric name
        findings_key: Payload key holding the list of findings
        name_keys: Keys tried, in order, for a finding's test name
        value_key: Key holding a finding's value
        unit_key: Key holding a finding's unit
        confidence_key: Payload key holding the overall confidence score
    """

    provider_name: str
    field_aliases: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    findings_key: str = "key_findings"
    name_keys: Tuple[str, ...] = ("finding", "name", "test", "parameter", "metric")
    value_key: str = "value"
    unit_key: str = "unit"
    confidence_key: str = "confidence_score"


_COMMON_FIELDS: Dict[str, str] = {
    "blood_pressure": BLOOD_PRESSURE,
    "weight": "Weight",
    "height": "Height",
    "bmi": "BMI",
}


def _rules(provider_name: str, aliases: Dict[str, str]) -> ProviderMappingRules:
    return ProviderMappingRules(
        provider_name=provider_name,
        field_aliases=MappingProxyType({**_COMMON_FIELDS, **aliases}),
    )


DEFAULT_MAPPING_RULES: Mapping[str, ProviderMappingRules] = MappingProxyType(
    {
        "deepseek": _rules(
            "deepseek",
            {
                "systolic_bp": BLOOD_PRESSURE_SYSTOLIC,
                "diastolic_bp": BLOOD_PRESSURE_DIASTOLIC,
            },
        ),
        "claude": _rules(
            "claude",
            {
                "bp_sys": BLOOD_PRESSURE_SYSTOLIC,
                "bp_dia": BLOOD_PRESSURE_DIASTOLIC,
            },
        ),
        "openai": _rules(
            "openai",
            {
                "blood_pressure_systolic": BLOOD_PRESSURE_SYSTOLIC,
                "blood_pressure_diastolic": BLOOD_PRESSURE_DIASTOLIC,
            },
        ),
    }
)
