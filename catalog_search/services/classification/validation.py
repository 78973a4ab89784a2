"""Configuration-time overlap detection for taxonomy rules.

A broad group-level rule and a narrower class-level rule can assign the
same product to two taxonomy codes when the broad rule's exclusion list
misses a class. Detected overlaps are reported as warnings; no resolution
policy is applied.

Only the structural matchers (group, class allow-list, exclusion list) are
analysed. Rules that also use text patterns or feature conditions are left
out because their overlap depends on product data.
"""
from dataclasses import dataclass
from itertools import combinations
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Set, Tuple
import structlog

from catalog_search.models.product import ProductRecord
from catalog_search.models.rules import ClassificationRule, RuleTargetKind
from catalog_search.models.taxonomy import TaxonomyNode, is_lineage

logger = structlog.get_logger(__name__)

ClassVocabulary = Mapping[str, FrozenSet[str]]


@dataclass(frozen=True)
class ConfigurationWarning:
    """A non-fatal configuration finding.

    Attributes:
        code: Warning kind (e.g. "rule_overlap")
        message: Human-readable description
        rule_ids: Rules involved
        classes: Technical classes both rules can claim (empty when only
            whole groups are known to overlap)
    """
    code: str
    message: str
    rule_ids: Tuple[str, ...]
    classes: FrozenSet[str] = frozenset()


def observed_class_vocabulary(products: Iterable[ProductRecord]) -> Dict[str, FrozenSet[str]]:
    """Collect class -> groups pairs as they occur in the catalog."""
    vocabulary: Dict[str, Set[str]] = {}
    for product in products:
        if product.class_code and product.group_code:
            vocabulary.setdefault(product.class_code, set()).add(product.group_code)
    return {class_code: frozenset(groups) for class_code, groups in vocabulary.items()}


def _is_structural(rule: ClassificationRule) -> bool:
    return (
        rule.active
        and rule.target_kind == RuleTargetKind.TAXONOMY
        and bool(rule.group_codes or rule.class_codes)
        and not rule.text_pattern
        and not rule.feature_conditions
    )


def _may_claim(rule: ClassificationRule, class_code: str, vocabulary: ClassVocabulary) -> bool:
    """True if the rule can match a product of this class.

    Classes missing from the vocabulary may belong to any group.
    """
    if class_code in rule.excluded_class_codes:
        return False
    if rule.class_codes and class_code not in rule.class_codes:
        return False
    if rule.group_codes:
        groups = vocabulary.get(class_code)
        if groups is not None and not (groups & rule.group_codes):
            return False
    return True


def _candidate_classes(
    a: ClassificationRule,
    b: ClassificationRule,
    vocabulary: ClassVocabulary,
) -> Set[str]:
    candidates = set(a.class_codes) | set(b.class_codes)
    groups = a.group_codes | b.group_codes
    for class_code, class_groups in vocabulary.items():
        if class_groups & groups:
            candidates.add(class_code)
    return candidates


def find_rule_overlaps(
    rules: Iterable[ClassificationRule],
    vocabulary: Optional[ClassVocabulary] = None,
    taxonomy: Optional[Mapping[str, TaxonomyNode]] = None,
) -> List[ConfigurationWarning]:
    """Detect taxonomy rules whose positive criteria overlap.

    Args:
        rules: Rule set to inspect
        vocabulary: class -> groups pairs (see observed_class_vocabulary)
        taxonomy: Taxonomy nodes; parent/child targets are not reported

    Returns:
        One warning per overlapping rule pair, ordered by rule ids
    """
    vocabulary = vocabulary or {}
    taxonomy = taxonomy or {}
    structural = sorted((r for r in rules if _is_structural(r)), key=lambda r: r.id)
    warnings: List[ConfigurationWarning] = []

    for a, b in combinations(structural, 2):
        if a.target == b.target or is_lineage(a.target, b.target, taxonomy):
            continue

        shared = frozenset(
            c for c in _candidate_classes(a, b, vocabulary)
            if _may_claim(a, c, vocabulary) and _may_claim(b, c, vocabulary)
        )
        group_level_overlap = (
            not a.class_codes
            and not b.class_codes
            and bool(a.group_codes & b.group_codes)
        )
        if not shared and not group_level_overlap:
            continue

        if shared:
            message = (
                f"rules '{a.id}' ({a.target}) and '{b.id}' ({b.target}) can both match "
                f"classes {sorted(shared)}; add them to an exclusion list if the "
                f"categories should be disjoint"
            )
        else:
            message = (
                f"rules '{a.id}' ({a.target}) and '{b.id}' ({b.target}) both match "
                f"groups {sorted(a.group_codes & b.group_codes)}"
            )
        warning = ConfigurationWarning(
            code="rule_overlap",
            message=message,
            rule_ids=(a.id, b.id),
            classes=shared,
        )
        warnings.append(warning)
        logger.warning(
            "classification_rule_overlap",
            rule_ids=list(warning.rule_ids),
            targets=[a.target, b.target],
            classes=sorted(shared),
        )
    return warnings
