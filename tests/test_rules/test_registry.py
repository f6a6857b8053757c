"""Tests for the rule registry."""

import pytest
from ci_translate.ir.features import FeatureKind
from ci_translate.ir.graph import JobNode
from ci_translate.rules import (
    BUILDKITE_PROFILE,
    Confidence,
    RuleRegistry,
    TranslationRule,
    load_registry,
)
from ci_translate.vendors import Vendor


def _noop(subject: object, ctx: object) -> None:
    return None


class TestLoadRegistry:
    """Tests for load_registry."""

    def test_cached_per_target(self) -> None:
        """The registry is built once per process."""
        assert load_registry(Vendor.BUILDKITE) is load_registry(Vendor.BUILDKITE)

    def test_unsupported_target(self) -> None:
        """Only Buildkite is a target."""
        with pytest.raises(ValueError, match="not a supported target dialect"):
            load_registry(Vendor.GITLAB)

    def test_sources_exclude_target(self) -> None:
        """Every other vendor is indexed as a source."""
        sources = load_registry(Vendor.BUILDKITE).sources
        assert Vendor.BUILDKITE not in sources
        assert set(sources) == {v for v in Vendor if v != Vendor.BUILDKITE}

    def test_every_slot_has_a_rule(self) -> None:
        """Each feature kind has at least one rule for each source."""
        registry = load_registry(Vendor.BUILDKITE)
        missing = [
            (source.value, feature.value)
            for source in registry.sources
            for feature in FeatureKind
            if not registry.rules_for(source, feature)
        ]
        assert missing == []


class TestLookup:
    """Tests for rule lookup order and scoping."""

    def test_priority_order(self) -> None:
        """Rules of one slot come back by priority."""
        registry = load_registry(Vendor.BUILDKITE)
        rules = registry.rules_for(Vendor.GITHUB_ACTIONS, FeatureKind.CACHING)
        assert [r.name for r in rules] == ["cache-plugin", "cache-plugin-approximate"]

    def test_source_scoped_rules(self) -> None:
        """Secret rules are registered for their own source only."""
        registry = load_registry(Vendor.BUILDKITE)
        circle = registry.rules_for(Vendor.CIRCLECI, FeatureKind.SECRET_SCOPE)
        jenkins = registry.rules_for(Vendor.JENKINS, FeatureKind.SECRET_SCOPE)
        assert [r.name for r in circle] == ["circleci-context"]
        assert [r.name for r in jenkins] == ["jenkins-credentials"]

    def test_table_is_read_only(self) -> None:
        """The lookup table cannot be modified."""
        registry = load_registry(Vendor.BUILDKITE)
        with pytest.raises(TypeError):
            registry.table[(Vendor.GITLAB, FeatureKind.TIMEOUT)] = ()  # type: ignore[index]

    def test_unknown_pair_is_empty(self) -> None:
        """A source the registry was not built for has no rules."""
        registry = RuleRegistry(BUILDKITE_PROFILE, [], [Vendor.GITLAB])
        assert registry.rules_for(Vendor.JENKINS, FeatureKind.TIMEOUT) == ()
        assert len(registry) == 0

    def test_ties_keep_declaration_order(self) -> None:
        """Rules with equal priority stay in declaration order."""
        rules = [
            TranslationRule("second", FeatureKind.TIMEOUT, Confidence.NATIVE, _noop, priority=5),
            TranslationRule("first", FeatureKind.TIMEOUT, Confidence.NATIVE, _noop, priority=1),
            TranslationRule("third", FeatureKind.TIMEOUT, Confidence.MANUAL, _noop, priority=5),
        ]
        registry = RuleRegistry(BUILDKITE_PROFILE, rules, [Vendor.GITLAB])
        names = [r.name for r in registry.rules_for(Vendor.GITLAB, FeatureKind.TIMEOUT)]
        assert names == ["first", "second", "third"]
        assert [r.name for r in registry] == ["second", "first", "third"]


class TestTranslationRule:
    """Tests for TranslationRule helpers."""

    def test_matches_source(self) -> None:
        """A rule without sources applies to every vendor."""
        rule = TranslationRule("t", FeatureKind.TIMEOUT, Confidence.NATIVE, _noop)
        scoped = TranslationRule(
            "s", FeatureKind.TIMEOUT, Confidence.NATIVE, _noop, sources=frozenset({Vendor.JENKINS})
        )
        assert rule.matches_source(Vendor.GITLAB)
        assert scoped.matches_source(Vendor.JENKINS)
        assert not scoped.matches_source(Vendor.GITLAB)

    def test_instruction_text_or_callable(self) -> None:
        """Instructions may be fixed text or derived from the job."""
        job = JobNode(id="build", label="Build", resource_hint="large")
        fixed = TranslationRule(
            "f", FeatureKind.TIMEOUT, Confidence.MANUAL, _noop, instruction="do it"
        )
        derived = TranslationRule(
            "d",
            FeatureKind.EXECUTOR_SIZING,
            Confidence.MANUAL,
            _noop,
            instruction=lambda j: f"queue {j.resource_hint}",
        )
        assert fixed.instruction_for(job) == "do it"
        assert derived.instruction_for(job) == "queue large"

    def test_confidence_rank(self) -> None:
        """Native ranks before approximate, approximate before manual."""
        ranks = [c.rank for c in (Confidence.NATIVE, Confidence.APPROXIMATE, Confidence.MANUAL)]
        assert ranks == sorted(ranks)
