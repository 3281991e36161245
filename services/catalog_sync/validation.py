"""
Catalog validation report for imports.

Errors make an import invalid; warnings flag incomplete but usable entries
(missing Arabic text, no color results, ...). Works on raw decoded
payloads so one bad entry does not hide the rest.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from .models import CatalogSnapshot, Collection, LocalizedText, TestDefinition, parse_snapshot


@dataclass
class ValidationReport:
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    total_tests: int = 0
    total_color_results: int = 0
    total_chemical_components: int = 0
    tests_with_instructions: int = 0
    tests: List[TestDefinition] = field(default_factory=list, repr=False)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            "isValid": self.is_valid,
            "errors": self.errors,
            "warnings": self.warnings,
            "summary": {
                "totalTests": self.total_tests,
                "totalColorResults": self.total_color_results,
                "totalChemicalComponents": self.total_chemical_components,
                "testsWithInstructions": self.tests_with_instructions,
            },
        }


def _format_error(err: Dict[str, Any]) -> str:
    loc = ".".join(str(part) for part in err.get("loc", ()))
    return f"{loc}: {err.get('msg', 'invalid')}" if loc else err.get("msg", "invalid")


def _missing_ar(text: Optional[LocalizedText]) -> bool:
    return text is not None and bool(text.en) and not text.ar


def _entries(payload: Any) -> Optional[List[Any]]:
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in ("testDefinitions", "test_definitions", "chemical_tests", "tests"):
            if isinstance(payload.get(key), list):
                return payload[key]
    return None


def validate_catalog(payload: Any) -> ValidationReport:
    """
    Validate a catalog payload (wire snapshot or bare list of tests).

    Returns:
        ValidationReport; report.tests holds the parsed entries when valid
    """
    report = ValidationReport()

    entries = _entries(payload)
    if entries is None:
        report.errors.append("Payload has no list of test definitions")
        return report

    report.total_tests = len(entries)
    seen_ids: Dict[str, int] = {}

    for index, raw in enumerate(entries):
        raw_id = raw.get("id") if isinstance(raw, dict) else None
        prefix = f"Test {index + 1} ({raw_id or 'no-id'})"

        try:
            test = TestDefinition.model_validate(raw)
        except ValidationError as e:
            for err in e.errors():
                report.errors.append(f"{prefix}: {_format_error(err)}")
            continue

        if test.id:
            if test.id in seen_ids:
                report.errors.append(f"{prefix}: Duplicate id (also test {seen_ids[test.id]})")
            else:
                seen_ids[test.id] = index + 1

        if not test.name.en:
            report.errors.append(f"{prefix}: Missing name.en")
        if not test.name.ar:
            report.errors.append(f"{prefix}: Missing name.ar")
        if not test.description.en:
            report.warnings.append(f"{prefix}: Missing description")
        elif not test.description.ar:
            report.warnings.append(f"{prefix}: Missing description.ar")

        if test.chemical_components:
            report.total_chemical_components += len(test.chemical_components)
            for n, component in enumerate(test.chemical_components, 1):
                if not component.name.en:
                    report.errors.append(f"{prefix} Component {n}: Missing name")
                elif _missing_ar(component.name):
                    report.warnings.append(f"{prefix} Component {n}: Missing name.ar")
        else:
            report.warnings.append(f"{prefix}: No chemical components")

        if test.color_results:
            report.total_color_results += len(test.color_results)
            for n, result in enumerate(test.color_results, 1):
                if not result.result.en:
                    report.errors.append(f"{prefix} Color Result {n}: Missing result")
                elif _missing_ar(result.result):
                    report.warnings.append(f"{prefix} Color Result {n}: Missing result.ar")
                if result.substance is None or not result.substance.en:
                    report.warnings.append(f"{prefix} Color Result {n}: Missing substance")
        else:
            report.warnings.append(f"{prefix}: No color results")

        if test.instructions:
            report.tests_with_instructions += 1
            for n, instruction in enumerate(test.instructions, 1):
                if not instruction.text.en:
                    report.errors.append(f"{prefix} Instruction {n}: Missing text")
                elif _missing_ar(instruction.text):
                    report.warnings.append(f"{prefix} Instruction {n}: Missing text.ar")

        if not test.preparation.en:
            report.warnings.append(f"{prefix}: Missing preparation")

        report.tests.append(test)

    return report


def parse_valid_catalog(payload: Any) -> CatalogSnapshot:
    """
    Parse a payload that passed validation.

    Raises:
        ValueError: the payload has validation errors
    """
    report = validate_catalog(payload)
    if not report.is_valid:
        raise ValueError(f"catalog has {len(report.errors)} error(s): {report.errors[0]}")
    return parse_snapshot(Collection.CATALOG, {"testDefinitions": [t.to_wire() for t in report.tests]})
