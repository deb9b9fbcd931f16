"""Denormalized ClusterMember views stored on each cluster row."""

from typing import Dict, List, Mapping, Sequence
from uuid import UUID

from rfp_engine.database.models import Answer, Question, QuestionCluster
from rfp_engine.schemas.clustering import ClusterMember, build_answer_preview


def build_member_views(
    master_question_id: UUID,
    questions: Sequence[Question],
    answers: Mapping[UUID, Answer],
) -> List[dict]:
    """Master first with similarity 1.0, then members in creation order."""
    ordered = sorted(questions, key=lambda q: (q.id != master_question_id, q.created_at is None, q.created_at, str(q.id)))
    views = []
    for question in ordered:
        answer = answers.get(question.id)
        is_master = question.id == master_question_id
        similarity = 1.0 if is_master else float(question.similarity_to_master or 0.0)
        views.append(
            ClusterMember(
                question_id=str(question.id),
                question_text=question.text,
                similarity=similarity,
                has_answer=answer is not None,
                answer_preview=build_answer_preview(answer.text) if answer else None,
            ).model_dump()
        )
    return views


def apply_member_views(
    cluster: QuestionCluster,
    questions: Sequence[Question],
    answers: Mapping[UUID, Answer],
) -> None:
    """Rebuild members, question_count and avg_similarity of a cluster in place."""
    members = build_member_views(cluster.master_question_id, questions, answers)
    cluster.members = members
    cluster.question_count = len(members)
    non_master = [m["similarity"] for m in members if m["question_id"] != str(cluster.master_question_id)]
    cluster.avg_similarity = round(sum(non_master) / len(non_master), 4) if non_master else 1.0


def group_by_cluster(questions: Sequence[Question]) -> Dict[UUID, List[Question]]:
    grouped: Dict[UUID, List[Question]] = {}
    for question in questions:
        if question.cluster_id is not None:
            grouped.setdefault(question.cluster_id, []).append(question)
    return grouped
