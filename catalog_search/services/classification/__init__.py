"""Product classification service.

This module maps the technical classification vocabulary onto taxonomy
memberships and capability flags using configuration-driven rules.

Key Components:
    - RuleClassifier: Evaluates every active rule against every product
    - CompiledRule: Validated rule with its text pattern compiled
    - find_rule_overlaps: Configuration-time overlap warnings
"""
from catalog_search.services.classification.classifier import (
    ClassificationResult,
    CompiledRule,
    RuleClassifier,
    classify,
    compile_rule,
    compile_rules,
)
from catalog_search.services.classification.validation import (
    ConfigurationWarning,
    find_rule_overlaps,
    observed_class_vocabulary,
)

__all__ = [
    "ClassificationResult",
    "CompiledRule",
    "RuleClassifier",
    "classify",
    "compile_rule",
    "compile_rules",
    "ConfigurationWarning",
    "find_rule_overlaps",
    "observed_class_vocabulary",
]
