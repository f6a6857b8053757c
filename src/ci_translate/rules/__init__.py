"""Data-driven translation rules, keyed by source vendor and feature kind."""

from __future__ import annotations

from functools import lru_cache

from ci_translate.rules.buildkite import PROFILE as BUILDKITE_PROFILE
from ci_translate.rules.buildkite import buildkite_rules
from ci_translate.rules.describe import describe_job_feature, describe_pipeline_feature
from ci_translate.rules.registry import (
    Confidence,
    MatrixLimits,
    RuleContext,
    RuleRegistry,
    TargetProfile,
    TranslationRule,
)
from ci_translate.vendors import Vendor

TARGETS = (Vendor.BUILDKITE,)


@lru_cache(maxsize=None)
def load_registry(target: Vendor) -> RuleRegistry:
    """Build the rule registry of a target dialect once per process.

    Raises
    ------
        ValueError: If no rules are registered for the target.

    """
    if target != Vendor.BUILDKITE:
        supported = ", ".join(v.value for v in TARGETS)
        raise ValueError(
            f"{target.display_name} is not a supported target dialect. Supported: {supported}"
        )
    sources = [vendor for vendor in Vendor if vendor != target]
    return RuleRegistry(BUILDKITE_PROFILE, buildkite_rules(), sources)


__all__ = [
    "BUILDKITE_PROFILE",
    "TARGETS",
    "Confidence",
    "MatrixLimits",
    "RuleContext",
    "RuleRegistry",
    "TargetProfile",
    "TranslationRule",
    "describe_job_feature",
    "describe_pipeline_feature",
    "load_registry",
]
