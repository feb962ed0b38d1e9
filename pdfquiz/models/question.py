"""Multiple-choice question model."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator

AI_OPTION_COUNT = 4


class Difficulty(str, Enum):  # noqa: UP042
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class Question(BaseModel):
    """A multiple-choice question grounded in one or more chunks.

    AI-generated questions always carry exactly four options.
    ``correct_option_index`` must index into ``options``.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    document_id: str
    question: str = Field(min_length=1)
    options: list[str]
    correct_option_index: int
    difficulty: Difficulty = Difficulty.MEDIUM
    question_type: str = "multiple_choice"
    source_chunk_ids: list[str] = Field(default_factory=list)
    page_reference: str = ""
    explanation: str = ""
    ai_generated: bool = True

    @model_validator(mode="after")
    def _check_options(self) -> Question:
        if self.ai_generated and len(self.options) != AI_OPTION_COUNT:
            raise ValueError(
                f"AI-generated questions need exactly {AI_OPTION_COUNT} options, "
                f"got {len(self.options)}"
            )
        if not 0 <= self.correct_option_index < len(self.options):
            raise ValueError(
                f"correct_option_index {self.correct_option_index} is out of range "
                f"for {len(self.options)} options"
            )
        return self
