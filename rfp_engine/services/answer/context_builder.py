"""Bounded prompt context from retrieved knowledge chunks."""

from dataclasses import dataclass, field
from typing import List, Sequence, Tuple

from rfp_engine.database.models import KnowledgeChunk
from rfp_engine.schemas.answer import AnswerSource

SOURCE_EXCERPT_CHARS = 500


@dataclass
class BuiltContext:
    text: str = ""
    sources: List[AnswerSource] = field(default_factory=list)
    truncated: bool = False


def chunk_to_source(chunk: KnowledgeChunk, similarity: float) -> AnswerSource:
    return AnswerSource(
        id=str(chunk.id),
        document_id=str(chunk.document_id) if chunk.document_id else None,
        file_name=chunk.file_name,
        chunk_key=chunk.chunk_key,
        text_content=chunk.content[:SOURCE_EXCERPT_CHARS],
        relevance=round(similarity, 4),
        created_at=chunk.created_at,
    )


def build_context(hits: Sequence[Tuple[KnowledgeChunk, float]], max_chars: int) -> BuiltContext:
    """Concatenate chunks (most similar first) until ``max_chars`` is reached.

    Chunks sharing a chunk key are included once. A chunk that does not fit
    whole is cut to the remaining budget and nothing after it is added.
    """
    built = BuiltContext()
    parts: List[str] = []
    seen_keys = set()
    used = 0

    for chunk, similarity in hits:
        if chunk.chunk_key in seen_keys:
            continue
        seen_keys.add(chunk.chunk_key)

        header = f"[chunkKey: {chunk.chunk_key}]"
        if chunk.file_name:
            header += f" (file: {chunk.file_name})"
        block = f"{header}\n{chunk.content.strip()}"

        remaining = max_chars - used
        if remaining <= len(header) + 1:
            built.truncated = True
            break
        if len(block) > remaining:
            block = block[:remaining]
            built.truncated = True

        parts.append(block)
        used += len(block) + 2
        built.sources.append(chunk_to_source(chunk, similarity))
        if built.truncated:
            break

    built.text = "\n\n".join(parts)
    return built
