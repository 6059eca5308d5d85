"""Tests for occurrence clustering."""

import itertools

import pytest

from dualscan.analyzers.base import Finding, Severity, StrategySource
from dualscan.analyzers.clustering import (
    DEFAULT_SIGNATURE,
    FeatureVector,
    cluster_findings,
    similar,
)


def occurrence(line: int, **flags) -> Finding:
    return Finding(
        rule_id="REL-001",
        severity=Severity.WARNING,
        file="src/api/client.ts",
        line=line,
        column=1,
        message="Retry loop in fetchData",
        category="reliability",
        strategy_source=StrategySource.TEXTUAL,
        extra=FeatureVector.from_flags(**flags).to_extra(),
    )


def member_lines(clusters) -> set:
    return {frozenset(f.line for f in cluster.members) for cluster in clusters}


class TestFeatureVector:
    """Test feature vectors and signatures."""

    def test_signature_order(self):
        """Signature tokens follow a fixed order with a trailing underscore."""
        vector = FeatureVector.from_flags(backoff=True, for_loop=True, max_retries=True, try_catch=True)

        assert vector.signature == "FOR_MAX_TRYCATCH_DELAY_"

    def test_empty_signature(self):
        """No flags gives the generic signature."""
        assert FeatureVector.from_flags().signature == DEFAULT_SIGNATURE

    def test_extra_round_trip(self):
        """Vectors stored in a finding's extra map read back unchanged."""
        vector = FeatureVector.from_flags(while_loop=True, throw=True)

        assert FeatureVector.from_extra(vector.to_extra()) == vector

    def test_unknown_flag(self):
        """Unknown flag names are rejected."""
        with pytest.raises(ValueError):
            FeatureVector.from_flags(recursion=True)


class TestSimilarity:
    """Test the similarity predicate."""

    VECTORS = [
        FeatureVector.from_flags(),
        FeatureVector.from_flags(for_loop=True, while_loop=True),
        FeatureVector.from_flags(for_loop=True, while_loop=True, try_catch=True, max_retries=True),
        FeatureVector.from_flags(for_loop=True, try_catch=True, backoff=True, set_timeout=True),
        FeatureVector.from_flags(for_loop=True, exponential=True),
        FeatureVector.from_flags(for_loop=True, throw=True),
    ]

    def test_symmetric(self):
        """similar(a, b) == similar(b, a) for every pair."""
        for a, b in itertools.product(self.VECTORS, repeat=2):
            assert similar(a, b) == similar(b, a)

    def test_same_signature(self):
        """Identical signatures are always similar."""
        a = FeatureVector.from_flags(for_loop=True, try_catch=True)

        assert similar(a, a, threshold=6)

    def test_threshold(self):
        """Four of six agreeing core flags are enough by default."""
        a = FeatureVector.from_flags()
        b = FeatureVector.from_flags(for_loop=True, while_loop=True)

        assert a.agreement(b) == 4
        assert similar(a, b)
        assert not similar(a, b, threshold=5)

    def test_signature_only_flags_do_not_count(self):
        """Exponential and throw shape the signature but not the agreement."""
        a = FeatureVector.from_flags(for_loop=True, exponential=True)
        b = FeatureVector.from_flags(for_loop=True, throw=True)

        assert a.signature != b.signature
        assert a.agreement(b) == 6


class TestClusterFindings:
    """Test connected-component clustering."""

    def test_groups_similar_occurrences(self):
        """Similar occurrences share a cluster; dissimilar ones stay alone."""
        findings = [
            occurrence(10, for_loop=True, try_catch=True, max_retries=True, backoff=True),
            occurrence(55, for_loop=True, try_catch=True, max_retries=True, backoff=True),
            occurrence(90, while_loop=True, set_timeout=True, backoff=True),
        ]

        clusters = cluster_findings(findings)

        assert member_lines(clusters) == {frozenset({10, 55}), frozenset({90})}
        assert clusters[0].signature == "FOR_MAX_TRYCATCH_DELAY_"
        assert clusters[0].first.line == 10

    def test_order_independent(self):
        """Every discovery order yields the same clusters."""
        findings = [
            occurrence(1),
            occurrence(2, for_loop=True, while_loop=True),
            occurrence(3, for_loop=True, while_loop=True, try_catch=True, max_retries=True),
            occurrence(4, try_catch=True, max_retries=True, backoff=True, set_timeout=True),
        ]
        expected = member_lines(cluster_findings(findings))

        for order in itertools.permutations(findings):
            assert member_lines(cluster_findings(list(order))) == expected

    def test_bridged_component(self):
        """A component linked only through a middle member is flagged."""
        findings = [
            occurrence(1),
            occurrence(2, for_loop=True, while_loop=True),
            occurrence(3, for_loop=True, while_loop=True, try_catch=True, max_retries=True),
        ]

        clusters = cluster_findings(findings)

        assert len(clusters) == 1
        assert clusters[0].size == 3
        assert clusters[0].bridged

    def test_signature_from_first_member(self):
        """A cluster keeps the signature of its first member."""
        findings = [
            occurrence(5, for_loop=True, try_catch=True),
            occurrence(9, for_loop=True, try_catch=True, throw=True),
        ]

        clusters = cluster_findings(findings)

        assert len(clusters) == 1
        assert clusters[0].signature == "FOR_TRYCATCH_"
        assert not clusters[0].bridged

    def test_empty(self):
        """No findings, no clusters."""
        assert cluster_findings([]) == []
