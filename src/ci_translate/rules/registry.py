"""Translation rule types and the immutable rule registry."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Union

from ci_translate.ir.features import FeatureKind
from ci_translate.ir.graph import JobNode, PipelineGraph
from ci_translate.vendors import Vendor

Subject = Union[JobNode, PipelineGraph]
"""A rule translates either one job or the pipeline as a whole."""


class Confidence(Enum):
    """Fidelity of a translation rule."""

    NATIVE = "native"  # exact semantic equivalent
    APPROXIMATE = "approximate"  # behavior preserved with caveats
    MANUAL = "manual"  # no equivalent; placeholder and instruction only

    @property
    def rank(self) -> int:
        """Sort rank, lower is better."""
        return _RANKS[self]


_RANKS = {Confidence.NATIVE: 0, Confidence.APPROXIMATE: 1, Confidence.MANUAL: 2}


@dataclass(frozen=True)
class MatrixLimits:
    """Capacity limits of the target's matrix syntax."""

    max_dimensions: int
    max_values_per_dimension: int
    max_adjustments: int
    max_jobs: int


@dataclass(frozen=True)
class TargetProfile:
    """Static facts about a target dialect.

    Attributes
    ----------
        vendor: The target vendor.
        matrix_limits: Matrix capacity limits.
        allowed_top_level_keys: Keys the target accepts at the document root.
        top_level_order: Canonical order of root keys.
        step_key_order: Canonical order of keys inside a step.
        anchor_section: Reserved root key grouping shared anchors.
        cache_fallbacks: Whether the target restores from broader cache levels.

    """

    vendor: Vendor
    matrix_limits: MatrixLimits
    allowed_top_level_keys: frozenset[str]
    top_level_order: tuple[str, ...]
    step_key_order: tuple[str, ...]
    anchor_section: str = "common"
    cache_fallbacks: bool = True


@dataclass(frozen=True)
class RuleContext:
    """Read-only view a rule gets of the translation it takes part in."""

    graph: PipelineGraph
    source_vendor: Vendor
    profile: TargetProfile
    prefer_native_matrix: bool = True
    hoist_global_env: bool = True


def _always(subject: Any, ctx: RuleContext) -> bool:
    return True


@dataclass(frozen=True)
class TranslationRule:
    """One way of translating a feature slot to the target.

    Attributes
    ----------
        name: Stable rule name, shown in diagnostics and ``rules`` listings.
        feature: Feature slot the rule translates.
        confidence: Fidelity of the translation.
        transform: Writes the translation into the subject's target fragment.
        applies: Whether the rule can translate this particular subject.
        priority: Order among rules of the same slot, lower first.
        instruction: Manual step restoring the source intent, as text or
            as a function of the subject.
        describe: Summary of the source intent for placeholder comments.
        sources: Source vendors the rule is limited to; None for all.

    """

    name: str
    feature: FeatureKind
    confidence: Confidence
    transform: Callable[[Any, RuleContext], None]
    applies: Callable[[Any, RuleContext], bool] = _always
    priority: int = 100
    instruction: str | Callable[[Any], str] | None = None
    describe: Callable[[Any], str] | None = None
    sources: frozenset[Vendor] | None = None

    def matches_source(self, vendor: Vendor) -> bool:
        """Check whether the rule is registered for a source vendor."""
        return self.sources is None or vendor in self.sources

    def instruction_for(self, subject: Subject) -> str | None:
        """Resolve the manual instruction for one subject."""
        if callable(self.instruction):
            return self.instruction(subject)
        return self.instruction


class RuleRegistry:
    """Rules of one target, keyed by ``(source vendor, feature kind)``.

    The table is built once and exposed read-only; every lookup returns
    a tuple ordered by rule priority, then declaration order.
    """

    def __init__(
        self,
        profile: TargetProfile,
        rules: Iterable[TranslationRule],
        sources: Iterable[Vendor],
    ) -> None:
        """Build the lookup table.

        Args:
        ----
            profile: The target profile.
            rules: Rule data, in declaration order.
            sources: Source vendors to index the rules for.

        """
        self.profile = profile
        self._rules = tuple(rules)
        table: dict[tuple[Vendor, FeatureKind], tuple[TranslationRule, ...]] = {}
        for source in sources:
            for feature in FeatureKind:
                matching = [
                    rule
                    for rule in self._rules
                    if rule.feature == feature and rule.matches_source(source)
                ]
                table[(source, feature)] = tuple(sorted(matching, key=lambda r: r.priority))
        self._table = MappingProxyType(table)

    @property
    def table(self) -> MappingProxyType[tuple[Vendor, FeatureKind], tuple[TranslationRule, ...]]:
        """The read-only lookup table."""
        return self._table

    @property
    def sources(self) -> list[Vendor]:
        """Source vendors the registry was built for."""
        return list(dict.fromkeys(source for source, _ in self._table))

    def rules_for(self, source: Vendor, feature: FeatureKind) -> tuple[TranslationRule, ...]:
        """Get the rules for a source vendor and feature, in registry order."""
        return self._table.get((source, feature), ())

    def __iter__(self) -> Iterator[TranslationRule]:
        return iter(self._rules)

    def __len__(self) -> int:
        return len(self._rules)
