"""Shared records: question metadata, reverse-fill plans and execution settings."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

PROVIDER_WJX = "wjx"

SEVERITY_BLOCK = "block"
SEVERITY_WARN = "warn"


class AnswerKind(str, Enum):
    """What kind of value a reverse-fill answer carries."""

    CHOICE = "choice"
    TEXT = "text"
    MULTI_TEXT = "multi_text"
    MATRIX = "matrix"


class ReverseFillFormat(str, Enum):
    """Layout of an exported answer sheet."""

    AUTO = "auto"
    WJX_SEQUENCE = "wjx_sequence"
    WJX_SCORE = "wjx_score"
    WJX_TEXT = "wjx_text"


class ReverseFillStatus(str, Enum):
    """How a question is answered during a reverse-fill run."""

    REVERSE = "reverse"
    FALLBACK = "fallback"
    BLOCKED = "blocked"


@dataclass
class QuestionMeta:
    """Parsed description of one survey question."""

    num: int = 0
    title: str = ""
    type_code: str = ""
    options: int = 0
    option_texts: list[str] = field(default_factory=list)
    provider: str = ""
    page: int = 0
    rows: int = 0
    row_texts: list[str] = field(default_factory=list)
    text_input_count: int = 0
    text_input_labels: list[str] = field(default_factory=list)
    is_text_like: bool = False
    is_multi_text: bool = False
    is_rating: bool = False
    is_location: bool = False
    is_description: bool = False
    unsupported: bool = False


@dataclass
class ReverseFillAnswer:
    """One recorded answer taken from a source sample."""

    question_num: int
    kind: AnswerKind
    choice_index: int | None = None
    text_value: str = ""
    text_values: list[str] = field(default_factory=list)
    matrix_choice_indexes: list[int] = field(default_factory=list)


@dataclass
class ReverseFillSampleRow:
    """All answers of one data row in the source sheet."""

    data_row_number: int
    worksheet_row_number: int = 0
    answers: dict[int, ReverseFillAnswer] = field(default_factory=dict)


@dataclass
class ReverseFillIssue:
    """A problem found while checking a reverse-fill source."""

    question_num: int
    title: str
    severity: str
    category: str
    reason: str
    suggestion: str = ""
    sample_rows: list[int] = field(default_factory=list)

    @property
    def blocking(self) -> bool:
        return self.severity == SEVERITY_BLOCK


@dataclass
class ReverseFillQuestionPlan:
    """How one question will be filled from the source."""

    question_num: int
    title: str
    question_type: str
    status: ReverseFillStatus
    column_headers: list[str] = field(default_factory=list)
    detail: str = ""
    fallback_ready: bool = False


@dataclass
class ReverseFillSpec:
    """The complete reverse-fill plan built from an export file."""

    source_path: str = ""
    selected_format: ReverseFillFormat = ReverseFillFormat.AUTO
    detected_format: ReverseFillFormat = ReverseFillFormat.AUTO
    start_row: int = 1
    total_samples: int = 0
    available_samples: int = 0
    target_num: int = 0
    question_plans: list[ReverseFillQuestionPlan] = field(default_factory=list)
    issues: list[ReverseFillIssue] = field(default_factory=list)
    samples: list[ReverseFillSampleRow] = field(default_factory=list)

    def blocking_issues(self) -> list[ReverseFillIssue]:
        """Return the issues that prevent the run, in their original order."""
        return [issue for issue in self.issues if issue.blocking]


@dataclass
class ExecutionConfig:
    """Settings that drive answer generation for one run."""

    target_num: int = 0
    survey_provider: str = ""
    answer_rules: list[dict[str, Any]] = field(default_factory=list)

    ai_mode: str = ""
    ai_provider: str = ""
    ai_api_key: str = ""
    ai_base_url: str = ""
    ai_model: str = ""
    ai_system_prompt: str = ""

    texts: list[list[str]] = field(default_factory=list)
    texts_prob: list[list[float]] = field(default_factory=list)
    text_titles: list[str] = field(default_factory=list)
    text_ai_flags: list[bool] = field(default_factory=list)
    text_random_modes: list[str] = field(default_factory=list)
    text_random_int_ranges: list[list[int] | None] = field(default_factory=list)
    multi_text_blank_modes: list[list[str]] = field(default_factory=list)
    multi_text_blank_int_ranges: list[list[list[int] | None]] = field(default_factory=list)
    multi_text_blank_ai_flags: list[list[bool]] = field(default_factory=list)
    location_parts: dict[int, list[str]] = field(default_factory=dict)

    distribution_modes: list[str] = field(default_factory=list)
    single_prob: list[Any] = field(default_factory=list)
    scale_prob: list[Any] = field(default_factory=list)
    droplist_prob: list[Any] = field(default_factory=list)
    matrix_prob: list[Any] = field(default_factory=list)

    questions_metadata: dict[int, QuestionMeta] = field(default_factory=dict)
    question_config_index_map: dict[int, str] = field(default_factory=dict)
    question_dimension_map: dict[int, str | None] = field(default_factory=dict)
    question_ordinal_score_map: dict[int, list[int]] = field(default_factory=dict)
    question_psycho_bias_map: dict[int, str] = field(default_factory=dict)
    psycho_target_alpha: float = 0.0

    reverse_fill_spec: ReverseFillSpec | None = None