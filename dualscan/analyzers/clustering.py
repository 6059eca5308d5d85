"""Occurrence clustering for duplicate-logic rules.

Each occurrence carries a feature vector of named boolean flags in its
``extra`` map. Two occurrences are similar when their signatures match or
when enough of their core flags agree. Clusters are the connected
components of that similarity graph, so the result does not depend on the
order occurrences were discovered in.
"""

import logging
from dataclasses import dataclass
from typing import Mapping, Sequence

from dualscan.analyzers.base import Finding

logger = logging.getLogger(__name__)

FEATURE_PREFIX = "feature."
SIGNATURE_KEY = "signature"

# Fixed flag order; the first six are compared, the rest only shape the signature
RETRY_FLAGS = (
    "for_loop",
    "while_loop",
    "try_catch",
    "max_retries",
    "backoff",
    "set_timeout",
    "exponential",
    "throw",
)
CORE_FLAGS = RETRY_FLAGS[:6]

SIGNATURE_TOKENS = (
    ("for_loop", "FOR"),
    ("while_loop", "WHILE"),
    ("max_retries", "MAX"),
    ("try_catch", "TRYCATCH"),
    ("backoff", "DELAY"),
    ("exponential", "EXPONENTIAL"),
    ("throw", "THROW"),
)
DEFAULT_SIGNATURE = "GENERIC_RETRY"

DEFAULT_THRESHOLD = 4


@dataclass(frozen=True)
class FeatureVector:
    """Named boolean flags describing one occurrence, in ``RETRY_FLAGS`` order."""

    flags: tuple[bool, ...]

    @classmethod
    def from_flags(cls, **values: bool) -> "FeatureVector":
        unknown = set(values) - set(RETRY_FLAGS)
        if unknown:
            raise ValueError(f"Unknown feature flags: {sorted(unknown)}")
        return cls(tuple(bool(values.get(name, False)) for name in RETRY_FLAGS))

    @classmethod
    def from_extra(cls, extra: Mapping[str, str]) -> "FeatureVector":
        return cls(tuple(extra.get(FEATURE_PREFIX + name) == "1" for name in RETRY_FLAGS))

    def __getitem__(self, name: str) -> bool:
        return self.flags[RETRY_FLAGS.index(name)]

    @property
    def signature(self) -> str:
        tokens = [token for name, token in SIGNATURE_TOKENS if self[name]]
        if not tokens:
            return DEFAULT_SIGNATURE
        return "".join(f"{token}_" for token in tokens)

    def agreement(self, other: "FeatureVector") -> int:
        """Number of core flags with the same value in both vectors."""
        return sum(1 for name in CORE_FLAGS if self[name] == other[name])

    def to_extra(self) -> dict[str, str]:
        extra = {FEATURE_PREFIX + name: "1" if value else "0" for name, value in zip(RETRY_FLAGS, self.flags)}
        extra[SIGNATURE_KEY] = self.signature
        return extra


def similar(a: FeatureVector, b: FeatureVector, threshold: int = DEFAULT_THRESHOLD) -> bool:
    """Symmetric similarity test."""
    return a.signature == b.signature or a.agreement(b) >= threshold


@dataclass(frozen=True)
class OccurrenceCluster:
    """Findings believed to be the same logical pattern."""

    signature: str
    members: tuple[Finding, ...]
    # True when some members are only linked through others
    bridged: bool = False

    @property
    def size(self) -> int:
        return len(self.members)

    @property
    def first(self) -> Finding:
        return self.members[0]


class _DisjointSet:
    def __init__(self, size: int):
        self.parent = list(range(size))

    def find(self, item: int) -> int:
        while self.parent[item] != item:
            self.parent[item] = self.parent[self.parent[item]]
            item = self.parent[item]
        return item

    def union(self, a: int, b: int):
        root_a, root_b = self.find(a), self.find(b)
        if root_a != root_b:
            # keep the earliest member as root
            self.parent[max(root_a, root_b)] = min(root_a, root_b)


def cluster_findings(findings: Sequence[Finding], threshold: int = DEFAULT_THRESHOLD) -> list[OccurrenceCluster]:
    """Group findings into clusters, singletons included, in discovery order."""
    vectors = [FeatureVector.from_extra(finding.extra) for finding in findings]
    count = len(findings)
    groups = _DisjointSet(count)
    edges: set[tuple[int, int]] = set()

    for i in range(count):
        for j in range(i + 1, count):
            if similar(vectors[i], vectors[j], threshold):
                edges.add((i, j))
                groups.union(i, j)

    components: dict[int, list[int]] = {}
    for index in range(count):
        components.setdefault(groups.find(index), []).append(index)

    clusters = []
    for root in sorted(components):
        members = components[root]
        bridged = any(
            (i, j) not in edges
            for pos, i in enumerate(members)
            for j in members[pos + 1:]
        )
        if bridged:
            logger.debug(
                f"Cluster at {findings[members[0]].file}:{findings[members[0]].line} joins "
                f"{len(members)} occurrences that are not all pairwise similar"
            )
        clusters.append(OccurrenceCluster(
            signature=vectors[members[0]].signature,
            members=tuple(findings[index] for index in members),
            bridged=bridged,
        ))
    return clusters
