"""
Manual reclassification rules applied after threshold classification.

A rule is a conjunction of conditions on a cell's attributes and its current
category:

* region field equals region value (compared as text, so ``4610`` in a
  numeric column matches ``"4610"`` in the rule table),
* the current category is in ``categories`` (when given),
* the name field equals ``name`` exactly (when given).

Rules are evaluated in list order and the first match supplies the new
category; cells matching no rule keep their category. Rules never look at
density or area, so a result can always be explained by replaying the table.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence

import pandas as pd

from communitysize.classify import as_category_column
from communitysize.config import DEFAULT_NAME_FIELD, Category
from communitysize.errors import InvalidOverrideRule

logger = logging.getLogger(__name__)

_RULE_KEYS = {"region_field", "region_value", "target", "categories", "name", "name_field", "note"}


@dataclass(frozen=True)
class OverrideRule:
    region_field: str
    region_value: str
    target: Category
    categories: Optional[FrozenSet[Category]] = None
    name: Optional[str] = None
    name_field: str = DEFAULT_NAME_FIELD
    note: str = ""

    def matches(self, attributes: Mapping[str, Any], category: Category) -> bool:
        value = attributes.get(self.region_field)
        if _key(value) is None or _key(value) != _key(self.region_value):
            return False
        if self.categories is not None and category not in self.categories:
            return False
        if self.name is not None and attributes.get(self.name_field) != self.name:
            return False
        return True

    def describe(self) -> str:
        parts = [f"{self.region_field}=={self.region_value}"]
        if self.categories is not None:
            labels = sorted(c.value for c in self.categories)
            parts.append(f"Category in {labels}")
        if self.name is not None:
            parts.append(f"{self.name_field}=={self.name!r}")
        return " & ".join(parts) + f" -> {self.target.value}"


# ---------------------------------------------------------------------------
# Rule table parsing / validation
# ---------------------------------------------------------------------------

def rule_from_dict(record: Mapping[str, Any]) -> OverrideRule:
    """Build and validate a rule from a plain mapping (e.g. parsed JSON)."""
    unknown = set(record) - _RULE_KEYS
    if unknown:
        raise InvalidOverrideRule(f"Unknown rule key(s): {sorted(unknown)}")
    for key in ("region_field", "region_value", "target"):
        if record.get(key) in (None, ""):
            raise InvalidOverrideRule(f"Rule is missing '{key}': {dict(record)}")

    try:
        target = Category.parse(record["target"])
        categories = record.get("categories")
        if categories is not None:
            if isinstance(categories, str):
                categories = [categories]
            categories = frozenset(Category.parse(c) for c in categories)
    except ValueError as exc:
        raise InvalidOverrideRule(f"{exc} in rule {dict(record)}") from exc

    rule = OverrideRule(
        region_field=str(record["region_field"]),
        region_value=str(record["region_value"]),
        target=target,
        categories=categories,
        name=record.get("name"),
        name_field=record.get("name_field") or DEFAULT_NAME_FIELD,
        note=record.get("note", ""),
    )
    validate_rules([rule])
    return rule


def rules_from_records(records: Iterable[Mapping[str, Any]]) -> List[OverrideRule]:
    rules = []
    for i, record in enumerate(records):
        try:
            rules.append(rule_from_dict(record))
        except InvalidOverrideRule as exc:
            raise InvalidOverrideRule(f"Override rule #{i}: {exc}") from exc
    return rules


def validate_rules(rules: Sequence[OverrideRule]) -> None:
    """
    Raise ``InvalidOverrideRule`` for the first malformed rule in *rules*.
    """
    for i, rule in enumerate(rules):
        if not isinstance(rule, OverrideRule):
            raise InvalidOverrideRule(f"Rule #{i} is not an OverrideRule: {rule!r}")
        if not isinstance(rule.region_field, str) or not rule.region_field:
            raise InvalidOverrideRule(f"Rule #{i} has no region field.")
        if _key(rule.region_value) is None:
            raise InvalidOverrideRule(f"Rule #{i} has no region value.")
        if not isinstance(rule.target, Category):
            raise InvalidOverrideRule(f"Rule #{i} target is not a Category: {rule.target!r}")
        if rule.target is Category.UNKNOWN:
            raise InvalidOverrideRule(f"Rule #{i} cannot target Unknown.")
        if rule.categories is not None:
            if not rule.categories:
                raise InvalidOverrideRule(f"Rule #{i} has an empty category set.")
            if not all(isinstance(c, Category) for c in rule.categories):
                raise InvalidOverrideRule(f"Rule #{i} category set holds non-Category values.")
        if rule.name is not None and (not isinstance(rule.name, str) or not rule.name):
            raise InvalidOverrideRule(f"Rule #{i} name must be a non-empty string.")
        if not isinstance(rule.name_field, str) or not rule.name_field:
            raise InvalidOverrideRule(f"Rule #{i} has no name field.")


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------

def match_rule(
    attributes: Mapping[str, Any],
    base_category: Category,
    rules: Sequence[OverrideRule],
) -> int:
    """Return the index of the first matching rule, or -1."""
    for i, rule in enumerate(rules):
        if rule.matches(attributes, base_category):
            return i
    return -1


def apply_overrides(
    attributes: Mapping[str, Any],
    base_category: Category,
    rules: Sequence[OverrideRule],
) -> Category:
    """Return the first matching rule's target, else *base_category*."""
    i = match_rule(attributes, base_category, rules)
    return rules[i].target if i >= 0 else base_category


def apply_override_rules(
    frame: pd.DataFrame,
    rules: Sequence[OverrideRule],
    category_col: str = "base_category",
    keep_unknown: bool = True,
    name: str = "grid",
) -> pd.DataFrame:
    """
    Apply *rules* to every row of *frame*.

    With *keep_unknown* (default) cells whose base category is Unknown are
    not offered to the rules, so an undefined density stays visible.

    Columns added:
    ``Category`` (ordered categorical) and ``override_rule`` (index of the
    matching rule, -1 when the base category was kept).
    """
    validate_rules(rules)
    result = frame.copy()

    fields = {r.region_field for r in rules} | {r.name_field for r in rules if r.name}
    absent = sorted(f for f in fields if f not in result.columns)
    if absent:
        logger.warning(
            "[%s] Override fields missing from input, rules on them never match: %s",
            name,
            absent,
        )
    present = [f for f in sorted(fields) if f in result.columns]
    if present:
        records = result[present].to_dict(orient="records")
    else:
        records = [{} for _ in range(len(result))]

    final: List[Category] = []
    matched: List[int] = []
    for record, label in zip(records, result[category_col]):
        base = Category.parse(label)
        if base is Category.UNKNOWN and keep_unknown:
            matched.append(-1)
            final.append(base)
            continue
        i = match_rule(record, base, rules)
        matched.append(i)
        final.append(rules[i].target if i >= 0 else base)

    result["Category"] = as_category_column(final)
    result["override_rule"] = pd.Series(matched, index=result.index, dtype="int64")

    hits = pd.Series(matched).value_counts()
    for i, rule in enumerate(rules):
        n = int(hits.get(i, 0))
        logger.info(
            "[%s] Override #%d %s: %d cell(s)%s",
            name,
            i,
            rule.describe(),
            n,
            f" ({rule.note})" if rule.note else "",
        )
    changed = int((result["Category"].astype(str) != result[category_col].astype(str)).sum())
    logger.info("[%s] Overrides changed %d of %d cells.", name, changed, len(result))
    return result


def override_counts(frame: pd.DataFrame) -> Dict[int, int]:
    """Return ``{rule index: cells matched}`` from an overridden frame."""
    counts = frame.loc[frame["override_rule"] >= 0, "override_rule"].value_counts()
    return {int(k): int(v) for k, v in counts.sort_index().items()}


def _key(value: Any) -> Optional[str]:
    if value is None or value is pd.NA:
        return None
    if isinstance(value, float):
        if math.isnan(value):
            return None
        if value.is_integer():
            value = int(value)
    text = str(value).strip()
    return text or None
