from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Literal

from backoffice.domain.models import ExtractedField

FieldCategory = Literal[
    "balance_sheet",
    "income_statement",
    "cash_flow",
    "taxes",
    "ar",
    "ap",
    "inventory",
    "equipment",
    "contracts",
    "general",
]

FUZZY_MATCH_THRESHOLD = 0.85

NUMERIC_CATEGORIES: frozenset[FieldCategory] = frozenset(
    {"balance_sheet", "income_statement", "cash_flow", "ar", "ap", "inventory", "equipment"}
)


@dataclass(frozen=True)
class FieldDefinition:
    key: str
    label: str
    category: FieldCategory
    required: bool = False


FIELD_REGISTRY: tuple[FieldDefinition, ...] = (
    FieldDefinition(key="business_name", label="Business Name", category="general", required=True),
    FieldDefinition(key="tax_id", label="Tax ID", category="taxes", required=True),
    FieldDefinition(key="owner_name", label="Owner Name", category="general", required=True),
    FieldDefinition(key="business_address", label="Business Address", category="general"),
    FieldDefinition(key="total_revenue", label="Total Revenue", category="income_statement"),
    FieldDefinition(key="net_income", label="Net Income", category="income_statement"),
    FieldDefinition(key="cash_on_hand", label="Cash on Hand", category="balance_sheet"),
    FieldDefinition(key="accounts_receivable", label="Accounts Receivable", category="ar"),
    FieldDefinition(key="accounts_payable", label="Accounts Payable", category="ap"),
    FieldDefinition(key="inventory_value", label="Inventory Value", category="inventory"),
    FieldDefinition(key="equipment_value", label="Equipment Value", category="equipment"),
    FieldDefinition(key="contract_term", label="Contract Term", category="contracts"),
)

_NON_ALNUM = re.compile(r"[^a-z0-9\s]")
_WHITESPACE = re.compile(r"\s+")
_LABEL_SEPARATOR = re.compile(r"[:\-]")


def field_definition(key: str) -> FieldDefinition | None:
    for definition in FIELD_REGISTRY:
        if definition.key == key:
            return definition
    return None


def is_numeric_field(key: str) -> bool:
    definition = field_definition(key)
    return definition is not None and definition.category in NUMERIC_CATEGORIES


def normalize_match_text(text: str) -> str:
    lowered = _NON_ALNUM.sub(" ", text.lower())
    return _WHITESPACE.sub(" ", lowered).strip()


def jaro_winkler(a: str, b: str) -> float:
    """Jaro-Winkler similarity with the standard 0.1 prefix scale over at most 4 chars."""
    if a == b:
        return 1.0
    if not a or not b:
        return 0.0

    match_distance = max(len(a), len(b)) // 2 - 1
    a_matches = [False] * len(a)
    b_matches = [False] * len(b)
    matches = 0
    for i, char in enumerate(a):
        start = max(0, i - match_distance)
        end = min(i + match_distance + 1, len(b))
        for j in range(start, end):
            if b_matches[j] or b[j] != char:
                continue
            a_matches[i] = True
            b_matches[j] = True
            matches += 1
            break

    if matches == 0:
        return 0.0

    transpositions = 0
    k = 0
    for i, char in enumerate(a):
        if not a_matches[i]:
            continue
        while not b_matches[k]:
            k += 1
        if char != b[k]:
            transpositions += 1
        k += 1

    jaro = (matches / len(a) + matches / len(b) + (matches - transpositions / 2) / matches) / 3

    prefix = 0
    for left, right in zip(a[:4], b[:4]):
        if left != right:
            break
        prefix += 1
    return jaro + prefix * 0.1 * (1 - jaro)


def extract_value(line: str, label: str) -> str | None:
    match = re.search(rf"{re.escape(label)}\s*[:\-]?\s*(.+)$", line, flags=re.IGNORECASE)
    if match:
        value = match.group(1).strip()
        return value or None
    parts = _LABEL_SEPARATOR.split(line)
    if len(parts) > 1:
        value = ":".join(parts[1:]).strip()
        return value or None
    tokens = line.split()
    if len(tokens) > 1:
        return " ".join(tokens[1:])
    return None


def normalize_numeric_value(value: str) -> str:
    """Render an amount as a plain number; parenthesised amounts are negative."""
    normalized = re.sub(r"\(([^)]+)\)", r"-\1", value)
    normalized = re.sub(r"[^0-9.\-]", "", normalized)
    head, dot, tail = normalized.partition(".")
    if dot:
        normalized = f"{head}.{tail.replace('.', '')}"
    try:
        number = float(normalized)
    except ValueError:
        return value.strip()
    if number.is_integer():
        return str(int(number))
    return repr(number)


def extract_fields(text: str, registry: tuple[FieldDefinition, ...] = FIELD_REGISTRY) -> list[ExtractedField]:
    lines = [line.strip() for line in text.replace("\r\n", "\n").replace("\r", "\n").split("\n")]
    lines = [line for line in lines if line]

    labels = [normalize_match_text(definition.label) for definition in registry]
    results: list[ExtractedField] = []
    for definition, label in zip(registry, labels):
        matched_line: str | None = None
        confidence = 0.0
        for line in lines:
            normalized_line = normalize_match_text(line)
            if not normalized_line:
                continue
            if label in normalized_line:
                matched_line = line
                confidence = 1.0
                continue
            # Lines carrying another field's exact label belong to that field.
            if any(other in normalized_line for other in labels):
                continue
            candidate = normalize_match_text(_LABEL_SEPARATOR.split(line, maxsplit=1)[0])
            similarity = jaro_winkler(label, candidate or normalized_line)
            if similarity >= FUZZY_MATCH_THRESHOLD and (matched_line is None or similarity > confidence):
                matched_line = line
                confidence = similarity

        if matched_line is None:
            continue
        value = extract_value(matched_line, definition.label)
        if not value:
            continue
        results.append(
            ExtractedField(
                field_key=definition.key,
                value=normalize_numeric_value(value) if is_numeric_field(definition.key) else value.strip(),
                confidence=confidence,
            )
        )
    return results
