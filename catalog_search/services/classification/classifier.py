"""Rule-based product classifier.

Maps the technical classification vocabulary (group, class, features,
descriptions) of each product onto taxonomy memberships and capability
flags.

Strategy:
1. Every active rule is evaluated independently against every product
2. A rule matches only if all of its matchers hold (group, class allow-list,
   class exclusion list, text pattern, feature conditions)
3. Every matching rule contributes its target; memberships and flags are sets
4. Priority orders evaluation and display, it never stops later rules

Example:
    result = classify(products, rules)
    # result.memberships_for("DT-102") == frozenset({"LUM", "LUM_CEIL"})
    # result.flags_for("DT-102") == frozenset({"indoor", "outdoor"})
"""
import re
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple
import structlog

from catalog_search.config import search_settings
from catalog_search.errors.exceptions import ProductDataError, RuleConfigurationError
from catalog_search.models.product import ProductRecord
from catalog_search.models.rules import ClassificationRule, RuleTargetKind
from catalog_search.services.parallel import map_partitions

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CompiledRule:
    """A validated rule with its text pattern compiled."""
    rule: ClassificationRule
    pattern: Optional[re.Pattern] = None

    def matches(self, product: ProductRecord) -> bool:
        """Evaluate all matchers of the rule as a conjunction.

        Raises:
            ProductDataError: If a feature condition meets malformed data
        """
        rule = self.rule
        if rule.group_codes and product.group_code not in rule.group_codes:
            return False
        if rule.class_codes and product.class_code not in rule.class_codes:
            return False
        if rule.excluded_class_codes and product.class_code in rule.excluded_class_codes:
            return False
        if self.pattern is not None:
            if not any(self.pattern.search(text) for text in product.descriptions if text):
                return False
        for condition in rule.feature_conditions:
            values = product.feature_values(condition.feature_id)
            if not any(condition.evaluate(value) for value in values):
                return False
        return True


def rule_problems(rule: ClassificationRule) -> List[str]:
    """List configuration problems of a single rule (empty when valid)."""
    problems = []
    if not rule.has_positive_matcher:
        problems.append(
            f"rule '{rule.id}' has no matchers; a rule needs a group, class, "
            f"text pattern or feature condition"
        )
    if rule.text_pattern is not None:
        try:
            re.compile(rule.text_pattern, re.IGNORECASE)
        except re.error as e:
            problems.append(f"rule '{rule.id}' has an invalid text pattern: {e}")
    overlap = rule.class_codes & rule.excluded_class_codes
    if overlap:
        problems.append(
            f"rule '{rule.id}' both allows and excludes classes {sorted(overlap)}"
        )
    return problems


def compile_rule(rule: ClassificationRule) -> CompiledRule:
    """Validate and compile one rule.

    Raises:
        RuleConfigurationError: If the rule has no matcher or an invalid pattern
    """
    problems = rule_problems(rule)
    if problems:
        raise RuleConfigurationError(
            f"Invalid classification rule '{rule.id}'",
            problems=problems,
            details={"rule_id": rule.id},
        )
    pattern = re.compile(rule.text_pattern, re.IGNORECASE) if rule.text_pattern else None
    return CompiledRule(rule=rule, pattern=pattern)


def compile_rules(
    rules: Iterable[ClassificationRule],
    strict: bool = True,
) -> Tuple[List[CompiledRule], Dict[str, List[str]]]:
    """Compile the active rules of a rule set, ordered by priority.

    Args:
        rules: Rule set as loaded from configuration
        strict: Raise on the first invalid rule set instead of isolating bad rules

    Returns:
        (compiled active rules, rejected rule id -> problems)

    Raises:
        RuleConfigurationError: Duplicate rule ids (never isolable), or any
            invalid active rule when strict
    """
    rules = list(rules)
    seen: Dict[str, int] = {}
    for rule in rules:
        seen[rule.id] = seen.get(rule.id, 0) + 1
    duplicates = sorted(rule_id for rule_id, count in seen.items() if count > 1)
    if duplicates:
        raise RuleConfigurationError(
            "Duplicate classification rule ids",
            problems=[f"rule id '{rule_id}' is defined more than once" for rule_id in duplicates],
        )

    compiled: List[CompiledRule] = []
    rejected: Dict[str, List[str]] = {}
    for rule in sorted(rules, key=lambda r: r.sort_key):
        if not rule.active:
            continue
        problems = rule_problems(rule)
        if problems:
            rejected[rule.id] = problems
            continue
        compiled.append(compile_rule(rule))

    if rejected:
        all_problems = [p for problems in rejected.values() for p in problems]
        if strict:
            raise RuleConfigurationError(
                "Invalid classification rules",
                problems=all_problems,
                details={"rule_ids": sorted(rejected)},
            )
        logger.error(
            "classification_rules_rejected",
            rule_ids=sorted(rejected),
            problems=all_problems,
        )
    return compiled, rejected


@dataclass
class ClassificationResult:
    """Memberships and flags for every evaluated product.

    Attributes:
        memberships: product_id -> taxonomy codes
        flags: product_id -> flag names
        skipped_evaluations: (product, rule) evaluations that failed on bad data
        skipped_products: Products whose evaluation failed entirely
    """
    memberships: Dict[str, FrozenSet[str]] = field(default_factory=dict)
    flags: Dict[str, FrozenSet[str]] = field(default_factory=dict)
    skipped_evaluations: int = 0
    skipped_products: int = 0

    def memberships_for(self, product_id: str) -> FrozenSet[str]:
        return self.memberships.get(product_id, frozenset())

    def flags_for(self, product_id: str) -> FrozenSet[str]:
        return self.flags.get(product_id, frozenset())

    def members_by_code(self) -> Dict[str, FrozenSet[str]]:
        """Invert memberships: taxonomy code -> product ids."""
        grouped: Dict[str, set] = {}
        for product_id, codes in self.memberships.items():
            for code in codes:
                grouped.setdefault(code, set()).add(product_id)
        return {code: frozenset(ids) for code, ids in grouped.items()}

    @property
    def classified_count(self) -> int:
        """Products holding at least one taxonomy membership."""
        return sum(1 for codes in self.memberships.values() if codes)

    def merge(self, other: "ClassificationResult") -> None:
        """Fold a partition result into this one."""
        self.memberships.update(other.memberships)
        self.flags.update(other.flags)
        self.skipped_evaluations += other.skipped_evaluations
        self.skipped_products += other.skipped_products


class RuleClassifier:
    """Configuration-driven classifier over a compiled rule set.

    Attributes:
        rules: Compiled active rules in priority order
        workers: Worker threads for the classification pass
        partition_size: Products per work unit
    """

    def __init__(
        self,
        rules: Sequence,
        workers: Optional[int] = None,
        partition_size: Optional[int] = None,
    ):
        """Initialize classifier.

        Args:
            rules: ClassificationRule or CompiledRule instances; raw rules are
                compiled strictly
            workers: Worker threads (default: SEARCH_BUILD_WORKERS)
            partition_size: Products per work unit (default: SEARCH_PARTITION_SIZE)
        """
        raw = [r for r in rules if isinstance(r, ClassificationRule)]
        compiled = [r for r in rules if isinstance(r, CompiledRule)]
        if raw:
            compiled.extend(compile_rules(raw, strict=True)[0])
        self.rules: List[CompiledRule] = sorted(compiled, key=lambda c: c.rule.sort_key)
        self.workers = workers or search_settings.build_workers
        self.partition_size = partition_size or search_settings.partition_size
        self._log = logger.bind(component="RuleClassifier")

    def classify_product(
        self,
        product: ProductRecord,
    ) -> Tuple[FrozenSet[str], FrozenSet[str], int]:
        """Classify one product.

        Returns:
            (taxonomy codes, flag names, number of rules skipped on bad data)
        """
        codes = set()
        flags = set()
        skipped = 0
        for compiled in self.rules:
            try:
                matched = compiled.matches(product)
            except ProductDataError as e:
                skipped += 1
                self._log.warning(
                    "rule_evaluation_skipped",
                    product_id=product.product_id,
                    rule_id=compiled.rule.id,
                    error=e.message,
                )
                continue
            if not matched:
                continue
            if compiled.rule.target_kind == RuleTargetKind.TAXONOMY:
                codes.add(compiled.rule.target)
            else:
                flags.add(compiled.rule.target)
        return frozenset(codes), frozenset(flags), skipped

    def _classify_partition(self, products: Sequence[ProductRecord]) -> ClassificationResult:
        partial = ClassificationResult()
        for product in products:
            try:
                codes, flags, skipped = self.classify_product(product)
            except Exception as e:
                partial.skipped_products += 1
                self._log.error(
                    "product_classification_failed",
                    product_id=getattr(product, "product_id", None),
                    error=str(e),
                    error_type=type(e).__name__,
                )
                continue
            partial.memberships[product.product_id] = codes
            partial.flags[product.product_id] = flags
            partial.skipped_evaluations += skipped
        return partial

    def classify(self, products: Iterable[ProductRecord]) -> ClassificationResult:
        """Run the classification pass over a product set.

        Partitions are classified independently and merged in order.
        """
        products = list(products)
        self._log.info(
            "classification_pass_started",
            product_count=len(products),
            rule_count=len(self.rules),
            workers=self.workers,
        )
        result = ClassificationResult()
        for partial in map_partitions(
            self._classify_partition, products, self.workers, self.partition_size
        ):
            result.merge(partial)

        self._log.info(
            "classification_pass_completed",
            product_count=len(products),
            classified_count=result.classified_count,
            skipped_products=result.skipped_products,
            skipped_evaluations=result.skipped_evaluations,
        )
        return result


def classify(
    products: Iterable[ProductRecord],
    rules: Sequence,
) -> ClassificationResult:
    """Classify products with a rule set using the configured build settings."""
    return RuleClassifier(rules).classify(products)
