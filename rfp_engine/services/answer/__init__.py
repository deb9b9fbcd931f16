"""Answer generation for cluster masters and confidence scoring."""

from rfp_engine.services.answer.answer_generator import AnswerGenerator
from rfp_engine.services.answer.confidence_score import compute_confidence

__all__ = ["AnswerGenerator", "compute_confidence"]
