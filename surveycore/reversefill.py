"""Building a reverse-fill plan that replays answers from an exported answer sheet."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

from surveycore.records import (
    PROVIDER_WJX,
    SEVERITY_BLOCK,
    SEVERITY_WARN,
    AnswerKind,
    QuestionMeta,
    ReverseFillAnswer,
    ReverseFillIssue,
    ReverseFillQuestionPlan,
    ReverseFillSampleRow,
    ReverseFillSpec,
    ReverseFillStatus,
)
from surveycore.rf_source import (
    Column,
    RawRow,
    SourceError,
    label_variants,
    load_source,
    parse_choice_answer,
)

_CHOICE_TYPES = ("single", "dropdown", "scale", "score")
_SUPPORTED_TYPES = (*_CHOICE_TYPES, "text", "multi_text", "matrix")
_ONE_COLUMN_TYPES = (*_CHOICE_TYPES, "text")
_MAX_LISTED_ISSUES = 12


class ReverseFillError(ValueError):
    """Raised when a reverse-fill plan cannot be built or has blocking issues."""

    def __init__(self, message: str, spec: ReverseFillSpec | None = None) -> None:
        super().__init__(message)
        self.spec = spec


@dataclass
class ReverseFillSettings:
    """User settings that control reverse fill."""

    enabled: bool = False
    source_path: str = ""
    format: str = "auto"
    start_row: int = 1
    target: int = 0
    survey_provider: str = ""
    configured_question_nums: set[int] = field(default_factory=set)


def infer_question_type(meta: QuestionMeta) -> str:
    """Classify a question into the answer type used for reverse fill."""
    type_code = meta.type_code.strip()
    if meta.provider == PROVIDER_WJX:
        if meta.is_multi_text or (meta.is_text_like and meta.text_input_count > 1):
            return "multi_text"
        if meta.is_text_like or type_code in ("1", "2"):
            return "text"
        wjx_types = {
            "3": "single", "33": "single", "34": "single",
            "4": "multiple",
            "6": "matrix", "9": "matrix",
            "7": "dropdown", "35": "dropdown",
            "8": "slider",
            "11": "order", "12": "order",
        }
        if type_code == "5":
            return "score" if meta.is_rating else "scale"
        if type_code in wjx_types:
            return wjx_types[type_code]

    if type_code in ("1", "2"):
        return "text" if meta.is_text_like else "single"
    if type_code == "5":
        return "score" if meta.is_rating else "scale"
    if type_code in ("8", "9"):
        return "multi_text" if meta.text_input_count > 1 or meta.is_multi_text else "text"
    generic = {
        "3": "single",
        "4": "multiple",
        "6": "matrix",
        "7": "dropdown",
        "35": "dropdown",
        "11": "slider",
        "12": "order",
    }
    if type_code in generic:
        return generic[type_code]
    return "text" if meta.is_text_like else "single"


def _supported(question_type: str, meta: QuestionMeta) -> bool:
    return question_type in _SUPPORTED_TYPES and not meta.is_location


def resolve_ordered_columns(columns: Sequence[Column], labels: Sequence[str]) -> list[Column]:
    """Order columns to follow labels; fall back to sheet order when they do not all match."""
    ordered = sorted(columns, key=lambda column: column.index)
    if not ordered or not labels or len(ordered) != len(labels):
        return ordered
    label_index: dict[str, int] = {}
    for position, label in enumerate(labels):
        for variant in label_variants(label):
            label_index.setdefault(variant, position)

    resolved: list[Column | None] = [None] * len(labels)
    used: set[int] = set()
    for column in ordered:
        for variant in label_variants(column.suffix):
            position = label_index.get(variant)
            if position is None or position in used:
                continue
            resolved[position] = column
            used.add(position)
            break
        else:
            return ordered
    if len(used) != len(labels):
        return ordered
    return [column for column in resolved if column is not None]


def parse_question_answer(
    meta: QuestionMeta,
    question_type: str,
    columns: Sequence[Column],
    row: RawRow,
    export_format: str,
) -> ReverseFillAnswer | None:
    """Read one question's answer from a data row; None when it is blank."""
    if not columns:
        return None
    values = row.values_by_column
    if question_type in _CHOICE_TYPES:
        return parse_choice_answer(meta.num, values.get(columns[0].index, ""), export_format, meta.option_texts)
    if question_type == "text":
        text = values.get(columns[0].index, "").strip()
        if not text:
            return None
        return ReverseFillAnswer(question_num=meta.num, kind=AnswerKind.TEXT, text_value=text)
    if question_type == "multi_text":
        texts = [values.get(column.index, "").strip() for column in columns]
        if not any(texts):
            return None
        return ReverseFillAnswer(question_num=meta.num, kind=AnswerKind.MULTI_TEXT, text_values=texts)
    if question_type == "matrix":
        texts = [values.get(column.index, "").strip() for column in columns]
        if not any(texts):
            return None
        if not all(texts):
            raise SourceError("矩阵题存在部分行为空")
        indices = []
        for text in texts:
            answer = parse_choice_answer(meta.num, text, export_format, meta.option_texts)
            if answer is None or answer.choice_index is None:
                raise SourceError("矩阵题行值解析失败")
            indices.append(answer.choice_index)
        return ReverseFillAnswer(question_num=meta.num, kind=AnswerKind.MATRIX, matrix_choice_indexes=indices)
    return None


def _status(fallback_ready: bool) -> ReverseFillStatus:
    return ReverseFillStatus.FALLBACK if fallback_ready else ReverseFillStatus.BLOCKED


def _issue(
    meta: QuestionMeta, category: str, reason: str, fallback_ready: bool, rows: Sequence[int] = ()
) -> ReverseFillIssue:
    if fallback_ready:
        severity, suggestion = SEVERITY_WARN, "执行时会回退到常规答题配置"
    else:
        severity, suggestion = SEVERITY_BLOCK, "请补充这道题的常规答题配置，或调整反填数据源"
    return ReverseFillIssue(
        question_num=meta.num,
        title=meta.title,
        severity=severity,
        category=category,
        reason=reason,
        suggestion=suggestion,
        sample_rows=list(rows),
    )


def _plan(
    meta: QuestionMeta,
    question_type: str,
    status: ReverseFillStatus,
    columns: Sequence[Column],
    detail: str,
    fallback_ready: bool,
) -> ReverseFillQuestionPlan:
    return ReverseFillQuestionPlan(
        question_num=meta.num,
        title=meta.title,
        question_type=question_type,
        status=status,
        column_headers=[column.header for column in columns],
        detail=detail,
        fallback_ready=fallback_ready,
    )


def build_spec(settings: ReverseFillSettings | None, questions: Sequence[QuestionMeta]) -> ReverseFillSpec | None:
    """Check the source against the questions and collect replayable answers.

    Returns None when reverse fill is off. Raises ReverseFillError, carrying the
    spec when one was built, if anything blocks the run.
    """
    if settings is None or not settings.enabled:
        return None
    provider = (settings.survey_provider or "").strip().lower() or PROVIDER_WJX
    if provider != PROVIDER_WJX:
        raise ReverseFillError("反填目前只支持问卷星")
    if not questions:
        raise ReverseFillError("当前还没有解析出问卷题目，无法校验反填")
    try:
        export = load_source(settings.source_path, settings.format)
    except SourceError as exc:
        raise ReverseFillError(str(exc)) from exc

    start_row = settings.start_row if settings.start_row > 0 else 1
    total_samples = export.total_data_rows
    available = max(0, total_samples - start_row + 1)
    target = settings.target if settings.target > 0 else available
    selected_rows = export.raw_rows[start_row - 1:]

    issues: list[ReverseFillIssue] = []
    plans: list[ReverseFillQuestionPlan] = []
    answers_by_row: dict[int, dict[int, ReverseFillAnswer]] = {row.data_row_number: {} for row in selected_rows}

    if available <= 0:
        issues.append(ReverseFillIssue(
            question_num=0,
            title="样本数量",
            severity=SEVERITY_BLOCK,
            category="sample_range",
            reason=f"起始样本行设为 {start_row}，但数据源只有 {total_samples} 行样本",
            suggestion="请调整反填起始行或更换样本更多的数据源",
        ))
    elif 0 < settings.target and settings.target > available:
        issues.append(ReverseFillIssue(
            question_num=0,
            title="样本数量",
            severity=SEVERITY_BLOCK,
            category="sample_count",
            reason=f"目标份数为 {settings.target}，但从起始样本行开始只剩 {available} 行可用样本",
            suggestion="请降低目标份数，或把起始样本行往前调，或更换样本更多的数据源",
        ))

    for meta in sorted(questions, key=lambda q: (q.page, q.num)):
        if meta.is_description:
            continue
        question_type = infer_question_type(meta)
        columns = export.question_columns.get(meta.num, [])
        fallback_ready = meta.num in settings.configured_question_nums
        status = _status(fallback_ready)

        def reject(category: str, reason: str, rows: Sequence[int] = ()) -> None:
            issues.append(_issue(meta, category, reason, fallback_ready, rows))
            plans.append(_plan(meta, question_type, status, columns, reason, fallback_ready))

        if not _supported(question_type, meta):
            reject("unsupported_type", "当前题型或题目结构不在反填支持范围内")
            continue
        if not columns:
            reject("mapping_missing", "数据源中没有找到这道题对应的列")
            continue
        ordered = list(columns)
        if question_type in _ONE_COLUMN_TYPES and len(columns) != 1:
            reject("mapping_ambiguous", "这道题在数据源中对应了多列，无法确认唯一答案列")
            continue
        if question_type == "matrix":
            if meta.rows > 0 and len(columns) != meta.rows:
                reject("mapping_mismatch", f"矩阵题解析出 {meta.rows} 行，但数据源里有 {len(columns)} 列")
                continue
            ordered = resolve_ordered_columns(columns, meta.row_texts)
        if question_type == "multi_text":
            ordered = resolve_ordered_columns(columns, meta.text_input_labels)

        error_rows: list[int] = []
        for row in selected_rows:
            try:
                answer = parse_question_answer(meta, question_type, ordered, row, export.selected_format)
            except SourceError:
                error_rows.append(row.data_row_number)
                break
            if answer is not None:
                answers_by_row[row.data_row_number][meta.num] = answer
        if error_rows:
            if question_type == "matrix" or question_type in _CHOICE_TYPES:
                reason = "这道题在样本中出现了无法匹配选项的值或不支持的复合值"
            else:
                reason = "这道题在样本中出现了无法稳定回放的值"
            reject("unsupported_value", reason, error_rows)
            for row_answers in answers_by_row.values():
                row_answers.pop(meta.num, None)
            continue

        detail = "来源列：" + ", ".join(column.header for column in ordered)
        plans.append(_plan(meta, question_type, ReverseFillStatus.REVERSE, ordered, detail, False))

    samples = [
        ReverseFillSampleRow(
            data_row_number=row.data_row_number,
            worksheet_row_number=row.worksheet_row_number,
            answers=answers_by_row[row.data_row_number],
        )
        for row in selected_rows
    ]
    spec = ReverseFillSpec(
        source_path=export.source_path,
        selected_format=export.selected_format,
        detected_format=export.detected_format,
        start_row=start_row,
        total_samples=total_samples,
        available_samples=available,
        target_num=target,
        question_plans=plans,
        issues=issues,
        samples=samples,
    )
    if spec.blocking_issues():
        raise ReverseFillError(format_blocking_message(spec), spec)
    return spec


def format_blocking_message(spec: ReverseFillSpec) -> str:
    """Human-readable summary of the blocking issues; empty when there are none."""
    issues = spec.blocking_issues()
    if not issues:
        return ""
    lines = ["反填配置校验失败："]
    for position, issue in enumerate(issues):
        if position >= _MAX_LISTED_ISSUES:
            lines.append(f"  - 其余 {len(issues) - _MAX_LISTED_ISSUES} 个阻塞项已省略")
            break
        prefix = f"第 {issue.question_num} 题" if issue.question_num > 0 else "样本数量"
        lines.append(f"  - {prefix}：{issue.reason}")
        if issue.suggestion:
            lines.append("    " + issue.suggestion)
    return "\n".join(lines)