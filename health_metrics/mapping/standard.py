"""Standard metric mapper.

Normalizes provider-specific extraction output into the canonical metric
schema. Mapping is a pure function of ``(provider_name, raw payload)``: the
mapper holds only immutable lookup tables built at construction, so one
instance is shared by every request.
"""

from __future__ import annotations

import logging
import math
import re
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

from .. import validation
from ..errors import ConfigurationError, MetricMappingError
from ..models import Metric, MetricSet, RawExtractionResult
from .catalog import (
    BLOOD_PRESSURE,
    BLOOD_PRESSURE_DIASTOLIC,
    BLOOD_PRESSURE_NAMES,
    BLOOD_PRESSURE_SYSTOLIC,
    FUZZY_PATTERNS,
    METRIC_CATALOG,
    MetricDefinition,
    normalize_unit,
)
from .rules import DEFAULT_MAPPING_RULES, ProviderMappingRules

LOGGER = logging.getLogger(__name__)

BASE_CONFIDENCE = 0.8
UNIT_MATCH_BONUS = 0.15
PRIORITY_BONUS = 0.05

_STRIP_PREFIX = re.compile(r"^(serum|plasma)\s+")
_STRIP_SUFFIX = re.compile(r"\s+(level|levels|concentration)$")
_DISALLOWED = re.compile(r"[^\w\s\-°µ]")
_NUMBER = re.compile(r"[-+]?\d*\.?\d+")
_THOUSANDS = re.compile(r"(?<=\d),(?=\d{3}(?!\d))")
_PRESSURE_READING = re.compile(r"^\s*(\d{2,3}(?:\.\d+)?)\s*/\s*(\d{2,3}(?:\.\d+)?)")
_FINDING_STRING = re.compile(r"^\s*([^:=]+?)\s*[:=]\s*(.+)$")


def clean_metric_name(raw_name: str) -> str:
    """Normalize a raw parameter name for catalog lookups."""
    clean = str(raw_name).strip().lower().replace("_", " ")
    clean = _DISALLOWED.sub("", clean)
    clean = re.sub(r"\s+", " ", clean).strip()
    clean = _STRIP_PREFIX.sub("", clean)
    clean = _STRIP_SUFFIX.sub("", clean)
    return clean.strip()


def parse_number(value: Any) -> Optional[float]:
    """Return the first number in ``value`` (int, float or text), or None."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        try:
            number = float(value)
        except OverflowError:
            return None
    else:
        match = _NUMBER.search(_THOUSANDS.sub("", str(value)))
        if match is None:
            return None
        number = float(match.group())
    return number if math.isfinite(number) else None


class StandardMetricMapper:
    """Map raw provider output to a ``MetricSet``.

    Raw names are resolved against the catalog in four steps: exact canonical
    name, alias, fuzzy substring pattern, and finally a unit-aware contextual
    match that looks for a known alias inside a longer name.
    """

    def __init__(
        self,
        rules: Optional[Mapping[str, ProviderMappingRules]] = None,
        catalog: Optional[Mapping[str, MetricDefinition]] = None,
        required_metrics: Sequence[str] = (),
    ) -> None:
        self._rules: Dict[str, ProviderMappingRules] = dict(DEFAULT_MAPPING_RULES if rules is None else rules)
        self._catalog: Dict[str, MetricDefinition] = dict(METRIC_CATALOG if catalog is None else catalog)
        self.required_metrics: Tuple[str, ...] = tuple(required_metrics)

        self._exact: Dict[str, str] = {}
        self._aliases: Dict[str, str] = {}
        for definition in self._catalog.values():
            self._exact.setdefault(definition.name.lower(), definition.name)
            self._exact.setdefault(clean_metric_name(definition.display_name), definition.name)
            for alias in definition.aliases:
                self._aliases.setdefault(clean_metric_name(alias), definition.name)
        for alias in BLOOD_PRESSURE_NAMES:
            self._aliases.setdefault(alias, BLOOD_PRESSURE)

        self._fuzzy: Tuple[Tuple[str, str], ...] = tuple(
            (pattern, target)
            for pattern, target in FUZZY_PATTERNS
            if target == BLOOD_PRESSURE or target in self._catalog
        )
        # Contextual candidates, most important metrics first.
        self._contextual: Tuple[Tuple[MetricDefinition, Tuple[str, ...]], ...] = tuple(
            (definition, _context_terms(definition))
            for definition in sorted(self._catalog.values(), key=lambda definition: definition.priority)
        )

    def map(self, provider_name: str, raw: RawExtractionResult) -> MetricSet:
        """Translate ``raw`` into canonical metrics.

        Raises:
            ConfigurationError: No mapping rules exist for ``provider_name``.
            MetricMappingError: A required canonical metric is absent.
        """
        name = provider_name.strip().lower()
        rules = self._rules.get(name)
        if rules is None:
            raise ConfigurationError.invalid_config(
                f"mapping.{name}",
                "no mapping rules registered for provider",
                {"provider": name, "available": sorted(self._rules)},
            )

        payload = raw.payload if isinstance(raw.payload, Mapping) else {}
        metrics: Dict[str, Metric] = {}

        for key, value in payload.items():
            target = rules.field_aliases.get(str(key).lower())
            if target is None:
                continue
            field_value, unit = _split_value_and_unit(value, rules)
            self._add(metrics, target, field_value, unit, source=str(key))

        findings = payload.get(rules.findings_key)
        if isinstance(findings, list):
            for finding in findings:
                parsed = self._parse_finding(finding, rules)
                if parsed is None:
                    continue
                raw_name, field_value, unit = parsed
                target = self.resolve_name(raw_name, field_value, unit)
                if target is None:
                    LOGGER.info("No canonical metric for %r from %s", raw_name, name)
                    continue
                self._add(metrics, target, field_value, unit, source=raw_name)
        elif findings is not None:
            LOGGER.debug("Ignoring non-list %s from %s", rules.findings_key, name)

        missing = [metric for metric in self.required_metrics if metric not in metrics]
        if missing:
            raise MetricMappingError(
                f"Required metrics missing from {name} output: {', '.join(missing)}",
                config_key="mapping.required_metrics",
                context={"provider": name, "missing": missing},
            )

        LOGGER.debug("Mapped %d metrics from %s", len(metrics), name)
        return MetricSet(
            metrics=metrics,
            provider_name=name,
            model=raw.model or None,
            confidence=_normalize_confidence(payload.get(rules.confidence_key)),
        )

    def resolve_name(self, raw_name: str, value: Any = None, unit: Optional[str] = None) -> Optional[str]:
        """Resolve a raw parameter name to a canonical name (or the blood pressure composite)."""
        clean = clean_metric_name(raw_name)
        if not clean:
            return None

        if clean in self._exact:
            return self._exact[clean]
        if clean in self._aliases:
            return self._aliases[clean]
        for pattern, target in self._fuzzy:
            if pattern in clean or (len(clean) >= 3 and clean in pattern):
                return target
        return self._contextual_match(clean, value, unit)

    def mapping_statistics(self) -> Dict[str, Any]:
        """Return catalog and rule totals for monitoring."""
        return {
            "total_definitions": len(self._catalog),
            "categories": sorted({d.category for d in self._catalog.values()}),
            "subcategories": sorted({d.subcategory for d in self._catalog.values() if d.subcategory}),
            "aliases_count": len(self._aliases),
            "fuzzy_patterns": len(self._fuzzy),
            "rule_sets": sorted(self._rules),
            "required_metrics": list(self.required_metrics),
        }

    def _contextual_match(self, clean: str, value: Any, unit: Optional[str]) -> Optional[str]:
        normalized_unit = normalize_unit(unit)
        if isinstance(value, str) and _PRESSURE_READING.match(value) and "mmhg" in normalized_unit:
            return BLOOD_PRESSURE
        if not normalized_unit:
            return None
        for definition, terms in self._contextual:
            if not definition.accepts_unit(unit):
                continue
            for term in terms:
                if re.search(rf"\b{re.escape(term)}\b", clean):
                    return definition.name
        return None

    def _parse_finding(
        self, finding: Any, rules: ProviderMappingRules
    ) -> Optional[Tuple[str, Any, Optional[str]]]:
        if isinstance(finding, Mapping):
            raw_name = next(
                (finding[key] for key in rules.name_keys if isinstance(finding.get(key), str) and finding[key].strip()),
                None,
            )
            if raw_name is None:
                return None
            value, unit = _split_value_and_unit(finding.get(rules.value_key), rules, finding.get(rules.unit_key))
            return raw_name, value, unit
        if isinstance(finding, str):
            match = _FINDING_STRING.match(finding)
            if match is None:
                return None
            value, unit = _split_value_and_unit(match.group(2), rules)
            return match.group(1), value, unit
        return None

    def _add(
        self,
        metrics: Dict[str, Metric],
        target: str,
        value: Any,
        unit: Optional[str],
        source: str,
    ) -> None:
        if target == BLOOD_PRESSURE:
            reading = _PRESSURE_READING.match(str(value)) if value is not None else None
            if reading is None:
                LOGGER.info("Unparseable blood pressure %r from %s", value, source)
                return
            self._add(metrics, BLOOD_PRESSURE_SYSTOLIC, reading.group(1), unit, source)
            self._add(metrics, BLOOD_PRESSURE_DIASTOLIC, reading.group(2), unit, source)
            return

        if target in metrics:
            return
        definition = self._catalog.get(target)
        if definition is None:
            return

        number = parse_number(value)
        if number is None:
            LOGGER.debug("No numeric value for %s (%r)", target, value)
            return
        converted = definition.convert(number, unit)
        if converted is None:
            LOGGER.info("Cannot convert %s from unit %r to %s", target, unit, definition.unit)
            return
        if not validation.is_plausible(target, converted):
            LOGGER.warning("Dropping implausible %s value %s %s", target, converted, definition.unit)
            return

        metrics[target] = Metric(
            name=target,
            value=converted,
            unit=definition.unit,
            confidence=_mapping_confidence(definition, unit),
            category=definition.category,
            status=validation.classify_status(target, converted),
        )


def _split_value_and_unit(
    value: Any,
    rules: ProviderMappingRules,
    unit: Any = None,
) -> Tuple[Any, Optional[str]]:
    """Return ``(value, unit)``, reading nested objects and "95 mg/dL" strings."""
    if isinstance(value, Mapping):
        return _split_value_and_unit(value.get(rules.value_key), rules, value.get(rules.unit_key) or unit)

    unit_text = str(unit).strip() if isinstance(unit, str) and unit.strip() else None
    if unit_text is None and isinstance(value, str):
        reading = _PRESSURE_READING.match(value)
        match = reading or _NUMBER.search(_THOUSANDS.sub("", value))
        if match is not None:
            remainder = _THOUSANDS.sub("", value)[match.end():] if reading is None else value[reading.end():]
            remainder = remainder.strip().split("(")[0].strip()
            if remainder and (remainder[0].isalpha() or remainder[0] in "µμ%"):
                unit_text = remainder
    return value, unit_text


def _mapping_confidence(definition: MetricDefinition, unit: Optional[str]) -> float:
    confidence = BASE_CONFIDENCE
    if unit and normalize_unit(unit) == normalize_unit(definition.unit):
        confidence += UNIT_MATCH_BONUS
    if definition.priority <= 2:
        confidence += PRIORITY_BONUS
    return round(min(1.0, confidence), 4)


def _normalize_confidence(score: Any) -> Optional[float]:
    number = parse_number(score)
    if number is None or number < 0:
        return None
    if number > 1:
        number /= 100.0
    return round(min(1.0, number), 4)


def _context_terms(definition: MetricDefinition) -> Tuple[str, ...]:
    terms = (clean_metric_name(definition.display_name),) + tuple(
        clean_metric_name(alias) for alias in definition.aliases
    )
    return tuple(term for term in terms if len(term) >= 3)
