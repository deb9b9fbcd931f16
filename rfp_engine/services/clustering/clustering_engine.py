"""Greedy single-pass clustering of near-duplicate questions.

The engine is a pure function over embeddings: it never touches the
database. Questions are visited in the given order; each one joins the most
similar open master when the cosine similarity reaches the cluster
threshold, otherwise it becomes a new master. Ties go to the earliest
master, so a fixed input order always yields the same partition.

Pairs whose similarity falls in ``[similar_threshold, cluster_threshold)``
and that ended up in different clusters are reported as suggestion links.
They never change membership.
"""

import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

import numpy as np

from rfp_engine.core.exceptions import ClusteringError
from rfp_engine.schemas.clustering import ClusteringThresholds
from rfp_engine.services.clustering.similarity import normalize_rows, stack_embeddings
from rfp_engine.utils.logging import get_logger

LOGGER = get_logger(__name__)

CLUSTER_ID_NAMESPACE = uuid.uuid5(uuid.NAMESPACE_DNS, "question-clusters.rfp-engine")


def cluster_id_for(project_id, master_question_id) -> uuid.UUID:
    """Deterministic cluster id, stable across re-runs with the same master."""
    return uuid.uuid5(CLUSTER_ID_NAMESPACE, f"{project_id}#{master_question_id}")


@dataclass(frozen=True)
class ClusterCandidate:
    """Question to place, in stable input order."""
    question_id: str
    text: str
    embedding: Sequence[float]


@dataclass(frozen=True)
class SeedMaster:
    """Master of an already persisted cluster, used for incremental runs."""
    cluster_id: str
    question_id: str
    text: str
    embedding: Sequence[float]


@dataclass(frozen=True)
class ClusterAssignment:
    question_id: str
    master_question_id: str
    similarity: float
    is_master: bool


@dataclass
class EngineCluster:
    """Cluster produced by one run.

    For seeded clusters ``members`` holds only the questions placed in this
    run; the persisted members are not repeated.
    """
    master_question_id: str
    master_question_text: str
    members: List[ClusterAssignment] = field(default_factory=list)
    cluster_id: Optional[str] = None
    seeded: bool = False

    @property
    def question_count(self) -> int:
        return len(self.members)

    @property
    def avg_similarity(self) -> float:
        similarities = [m.similarity for m in self.members if not m.is_master]
        if not similarities:
            return 1.0
        return round(float(np.mean(similarities)), 4)


@dataclass(frozen=True)
class SimilarLink:
    question_id: str
    similar_question_id: str
    similarity: float


@dataclass
class ClusteringResult:
    clusters: List[EngineCluster]
    assignments: Dict[str, ClusterAssignment]
    similar_links: List[SimilarLink]

    @property
    def new_clusters(self) -> List[EngineCluster]:
        return [c for c in self.clusters if not c.seeded]


class ClusteringEngine:
    """Partitions questions into clusters with exactly one master each."""

    def __init__(self, thresholds: Optional[ClusteringThresholds] = None):
        self.thresholds = thresholds or ClusteringThresholds()

    def cluster(
        self,
        candidates: Sequence[ClusterCandidate],
        seed_masters: Sequence[SeedMaster] = (),
    ) -> ClusteringResult:
        """Assign every candidate to exactly one cluster.

        Args:
            candidates: Questions to place, in stable order
            seed_masters: Existing masters that new questions may join

        Returns:
            ClusteringResult with clusters (seeded ones first), per-question
            assignments and suggestion links

        Raises:
            ClusteringError: On inconsistent dimensions or duplicate ids
        """
        candidates = list(candidates)
        seeds = list(seed_masters)
        if not candidates:
            return ClusteringResult(clusters=[], assignments={}, similar_links=[])

        question_ids = [c.question_id for c in candidates]
        if len(set(question_ids)) != len(question_ids):
            raise ClusteringError("Duplicate question ids in clustering input")

        matrix = stack_embeddings([s.embedding for s in seeds] + [c.embedding for c in candidates])
        normalized, zero_mask = normalize_rows(matrix)
        offset = len(seeds)
        cluster_threshold = self.thresholds.cluster_threshold

        clusters: List[EngineCluster] = []
        # Masters that can accept members; zero vectors never do
        open_rows: List[int] = []
        open_clusters: List[EngineCluster] = []
        row_cluster: Dict[int, EngineCluster] = {}

        for row, seed in enumerate(seeds):
            seeded = EngineCluster(
                master_question_id=seed.question_id,
                master_question_text=seed.text,
                cluster_id=seed.cluster_id,
                seeded=True,
            )
            clusters.append(seeded)
            row_cluster[row] = seeded
            if not zero_mask[row]:
                open_rows.append(row)
                open_clusters.append(seeded)

        assignments: Dict[str, ClusterAssignment] = {}
        for position, candidate in enumerate(candidates):
            row = offset + position
            best_similarity = 0.0
            best_cluster: Optional[EngineCluster] = None

            if not zero_mask[row] and open_rows:
                similarities = normalized[open_rows] @ normalized[row]
                best_index = int(np.argmax(similarities))
                best_similarity = float(np.clip(similarities[best_index], 0.0, 1.0))
                best_cluster = open_clusters[best_index]

            if best_cluster is not None and best_similarity >= cluster_threshold:
                assignment = ClusterAssignment(
                    question_id=candidate.question_id,
                    master_question_id=best_cluster.master_question_id,
                    similarity=round(best_similarity, 6),
                    is_master=False,
                )
                best_cluster.members.append(assignment)
                row_cluster[row] = best_cluster
            else:
                assignment = ClusterAssignment(
                    question_id=candidate.question_id,
                    master_question_id=candidate.question_id,
                    similarity=1.0,
                    is_master=True,
                )
                created = EngineCluster(
                    master_question_id=candidate.question_id,
                    master_question_text=candidate.text,
                    members=[assignment],
                )
                clusters.append(created)
                row_cluster[row] = created
                if not zero_mask[row]:
                    open_rows.append(row)
                    open_clusters.append(created)

            assignments[candidate.question_id] = assignment

        row_ids = [s.question_id for s in seeds] + question_ids
        similar_links = self._similar_links(normalized, zero_mask, row_ids, row_cluster, offset)

        LOGGER.info(
            "Clustering completed",
            extra={
                "questions": len(candidates),
                "seed_masters": len(seeds),
                "new_clusters": sum(1 for c in clusters if not c.seeded),
                "similar_links": len(similar_links),
                "cluster_threshold": cluster_threshold,
            },
        )
        return ClusteringResult(clusters=clusters, assignments=assignments, similar_links=similar_links)

    def _similar_links(
        self,
        normalized: np.ndarray,
        zero_mask: np.ndarray,
        row_ids: List[str],
        row_cluster: Dict[int, EngineCluster],
        offset: int,
    ) -> List[SimilarLink]:
        """Pairs in [similar_threshold, cluster_threshold) from different clusters.

        At least one side of every pair is a question placed in this run.
        """
        low = self.thresholds.similar_threshold
        high = self.thresholds.cluster_threshold
        if low >= high:
            return []

        similarity_matrix = np.clip(normalized @ normalized.T, 0.0, 1.0)
        links: List[SimilarLink] = []
        total = len(row_ids)
        for i in range(offset, total):
            if zero_mask[i]:
                continue
            for j in range(total):
                if j == i or zero_mask[j] or (offset <= j < i):
                    continue
                similarity = float(similarity_matrix[i, j])
                if not (low <= similarity < high):
                    continue
                if row_cluster[i] is row_cluster[j]:
                    continue
                first, second = (j, i) if j < i else (i, j)
                links.append(
                    SimilarLink(
                        question_id=row_ids[first],
                        similar_question_id=row_ids[second],
                        similarity=round(similarity, 6),
                    )
                )
        order = {question_id: index for index, question_id in enumerate(row_ids)}
        links.sort(key=lambda link: (order[link.question_id], order[link.similar_question_id]))
        return links
