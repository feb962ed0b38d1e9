"""LLM-based multiple-choice question generation over a document's chunks.

Chunks are processed in sequence order, a few at a time (two by default).
For each group the generator:

1. Pulls related context from elsewhere in the document through
   :class:`~pdfquiz.services.similarity_index.SimilarityIndex`, using the
   group's first chunk embedding as the query and excluding the group's
   own chunks.
2. Prompts the LLM in JSON mode for 3-4 questions with four options each.
3. Parses the response strictly and stamps each question with the ids and
   page reference of the chunks it came from.

A malformed response from any group raises :class:`LLMResponseError`
and the raw text is logged; the caller persists nothing in that case.
Provider failures (timeouts, rate limits) propagate unchanged so the
pipeline can retry the stage.
"""

from __future__ import annotations

import json
import re
from collections.abc import Awaitable, Callable
from typing import Any

import structlog
from pydantic import ValidationError

from pdfquiz.interfaces.llm_provider import ILLMProvider
from pdfquiz.models.chunk import Chunk
from pdfquiz.models.question import AI_OPTION_COUNT, Difficulty, Question
from pdfquiz.services.similarity_index import SimilarityIndex
from pdfquiz.utils.errors import LLMResponseError

logger = structlog.get_logger(logger_name=__name__)

_JSON_FENCE_RE = re.compile(r"```(?:json)?\s*\n?(.*?)\n?\s*```", re.DOTALL)
_OPTION_PREFIX_RE = re.compile(r"^\s*[A-Da-d][).:]\s+")
_RAW_LOG_LIMIT = 2000

_LETTERS = "ABCD"

_SYSTEM_PROMPT = (
    "You generate study quiz questions as strict JSON. Always answer with a "
    "single valid JSON object only: no markdown, no prose outside the JSON."
)

_USER_PROMPT_TEMPLATE = """\
Based on the following content, write 3-4 high-quality multiple-choice study questions.

CONTENT:
{content}
{related}
INSTRUCTIONS:
- Test understanding, not memorisation
- Exactly 4 options (A, B, C, D) per question, exactly one correct
- Include a short explanation of why the answer is correct
- Vary the difficulty (easy, medium, hard)
- Focus on key concepts and important relationships
- Only ask about the CONTENT section; use RELATED CONTEXT for background only

RESPONSE FORMAT (JSON):
{{
  "questions": [
    {{
      "question": "What is the main idea of ...?",
      "options": ["A) ...", "B) ...", "C) ...", "D) ..."],
      "correctAnswer": "B",
      "explanation": "B is correct because ...",
      "difficulty": "medium",
      "questionType": "multiple_choice"
    }}
  ]
}}
"""


def page_reference(chunks: list[Chunk]) -> str:
    """Return ``"Page N"`` or ``"Pages A-B"`` for the chunks' pages."""
    pages = sorted({c.page_number for c in chunks})
    if not pages:
        return ""
    if len(pages) == 1:
        return f"Page {pages[0]}"
    return f"Pages {pages[0]}-{pages[-1]}"


class QuestionGenerator:
    """Generates grounded multiple-choice questions for a document.

    Parameters
    ----------
    llm_provider:
        Completion provider; called in JSON mode.
    similarity_index:
        Used to fetch related context for each chunk group.
    chunks_per_group:
        How many consecutive chunks share one prompt.
    temperature, max_tokens:
        LLM sampling parameters.
    grounding_top_k, grounding_min_score:
        Bounds on the related context pulled per group.  ``grounding_top_k=0``
        disables grounding.
    """

    def __init__(
        self,
        llm_provider: ILLMProvider,
        similarity_index: SimilarityIndex,
        chunks_per_group: int = 2,
        temperature: float = 0.7,
        max_tokens: int = 2000,
        grounding_top_k: int = 3,
        grounding_min_score: float = 0.3,
    ) -> None:
        if chunks_per_group < 1:
            raise ValueError("chunks_per_group must be >= 1")
        self._llm = llm_provider
        self._index = similarity_index
        self._group_size = chunks_per_group
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._grounding_top_k = grounding_top_k
        self._grounding_min_score = grounding_min_score

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def generate(
        self,
        document_id: str,
        chunks: list[Chunk],
        checkpoint: Callable[[], Awaitable[None]] | None = None,
    ) -> list[Question]:
        """Generate questions for every group of *chunks*.

        Parameters
        ----------
        document_id:
            Owning document.
        chunks:
            The document's chunks in sequence order.
        checkpoint:
            Awaited before each LLM call; raising from it aborts generation
            (used for cooperative cancellation).

        Raises
        ------
        LLMResponseError
            If any group's response is malformed or nothing was generated.
        """
        ordered = sorted(chunks, key=lambda c: c.sequence)
        questions: list[Question] = []

        for start in range(0, len(ordered), self._group_size):
            group = ordered[start : start + self._group_size]
            if checkpoint is not None:
                await checkpoint()
            questions.extend(await self._generate_for_group(document_id, group))

        if not questions:
            raise LLMResponseError(
                "LLM produced no questions for the document",
                provider_name=self._llm.get_provider_name(),
            )

        logger.info(
            "questions_generated",
            document_id=document_id,
            groups=-(-len(ordered) // self._group_size),
            questions=len(questions),
        )
        return questions

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _generate_for_group(self, document_id: str, group: list[Chunk]) -> list[Question]:
        related = await self._related_context(document_id, group)
        prompt = _USER_PROMPT_TEMPLATE.format(
            content="\n\n".join(c.content for c in group),
            related=f"\nRELATED CONTEXT:\n{related}\n" if related else "",
        )

        response = await self._llm.complete(
            system_prompt=_SYSTEM_PROMPT,
            user_prompt=prompt,
            temperature=self._temperature,
            max_tokens=self._max_tokens,
            json_mode=True,
        )

        try:
            items = self._parse_llm_response(response)
            return [self._build_question(document_id, item, group) for item in items]
        except (json.JSONDecodeError, ValueError, KeyError, TypeError, ValidationError) as exc:
            logger.error(
                "question_response_invalid",
                document_id=document_id,
                first_sequence=group[0].sequence,
                error=str(exc),
                raw_response=response[:_RAW_LOG_LIMIT],
            )
            raise LLMResponseError(
                f"Malformed question JSON: {exc}",
                provider_name=self._llm.get_provider_name(),
            ) from exc

    async def _related_context(self, document_id: str, group: list[Chunk]) -> str:
        anchor = group[0].embedding
        if anchor is None or self._grounding_top_k <= 0:
            return ""
        results = await self._index.search(
            document_id,
            anchor,
            k=self._grounding_top_k,
            min_score=self._grounding_min_score,
            exclude_ids={c.id for c in group},
        )
        return "\n\n".join(r.chunk.content for r in results)

    @staticmethod
    def _parse_llm_response(response: str) -> list[dict[str, Any]]:
        """Extract the ``questions`` list from an LLM response string.

        Tolerates markdown code fences and leading prose before the JSON
        object.

        Raises
        ------
        json.JSONDecodeError
            If no valid JSON can be extracted.
        ValueError
            If the JSON is not an object with a ``questions`` list.
        """
        text = (response or "").strip()

        fence_match = _JSON_FENCE_RE.search(text)
        if fence_match:
            text = fence_match.group(1).strip()

        if not text.startswith("{"):
            brace_start = text.find("{")
            brace_end = text.rfind("}")
            if brace_start != -1 and brace_end > brace_start:
                text = text[brace_start : brace_end + 1]

        parsed = json.loads(text)
        if not isinstance(parsed, dict):
            raise ValueError("LLM response is not a JSON object")
        questions = parsed.get("questions")
        if not isinstance(questions, list):
            raise ValueError("LLM response has no 'questions' list")
        for item in questions:
            if not isinstance(item, dict):
                raise ValueError("Each question must be a JSON object")
        return questions

    def _build_question(self, document_id: str, item: dict[str, Any], group: list[Chunk]) -> Question:
        options = item["options"]
        if not isinstance(options, list) or len(options) != AI_OPTION_COUNT:
            raise ValueError(f"Expected {AI_OPTION_COUNT} options, got {options!r}")
        cleaned = [_OPTION_PREFIX_RE.sub("", str(o)).strip() for o in options]

        return Question(
            document_id=document_id,
            question=str(item["question"]).strip(),
            options=cleaned,
            correct_option_index=self._answer_index(item.get("correctAnswer"), cleaned),
            difficulty=self._difficulty(item.get("difficulty")),
            question_type=str(item.get("questionType") or "multiple_choice"),
            explanation=str(item.get("explanation") or ""),
            source_chunk_ids=[c.id for c in group],
            page_reference=page_reference(group),
        )

    @staticmethod
    def _answer_index(answer: Any, options: list[str]) -> int:
        """Map ``correctAnswer`` (letter, ``"B) ..."``, index or option text) to an index."""
        if isinstance(answer, bool):
            raise ValueError(f"Unrecognised correctAnswer {answer!r}")
        if isinstance(answer, int):
            return answer
        if isinstance(answer, str):
            value = answer.strip()
            if value.isdigit():
                return int(value)
            if value and value[0].upper() in _LETTERS and (
                len(value) == 1 or value[1] in ").:"
            ):
                return _LETTERS.index(value[0].upper())
            stripped = _OPTION_PREFIX_RE.sub("", value).strip()
            if stripped in options:
                return options.index(stripped)
        raise ValueError(f"Unrecognised correctAnswer {answer!r}")

    @staticmethod
    def _difficulty(value: Any) -> Difficulty:
        try:
            return Difficulty(str(value).strip().lower())
        except ValueError:
            return Difficulty.MEDIUM
