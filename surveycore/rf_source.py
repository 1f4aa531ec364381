"""Reading exported answer sheets (CSV or Excel) into question columns and rows."""

from __future__ import annotations

import csv
import os
import posixpath
import re
import xml.etree.ElementTree as ET
import zipfile
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

from surveycore.records import AnswerKind, ReverseFillAnswer, ReverseFillFormat

_QUESTION_HEADER_RE = re.compile(r"\s*(\d+)\s*[、,.，．]\s*(.*?)\s*", re.ASCII)
_SEQUENCE_SUFFIX_RE = re.compile(r"\(\s*选项\s*\d+\s*\)", re.ASCII)
_LEADING_INDEX_RE = re.compile(r"^[\(\[（【]?\s*\d+\s*[\)\]）】]?\s*", re.ASCII)
_NUMBER_TEXT_RE = re.compile(r"\d+(?:\.0+)?", re.ASCII)

_XLSX_EXTENSIONS = (".xlsx", ".xlsm", ".xltx", ".xltm")
_KEY_REPLACEMENTS = str.maketrans(
    {"（": "(", "）": ")", "【": "[", "】": "]", "—": "-", "–": "-", "－": "-", "：": ":"}
)
_VARIANT_SEPARATORS = ("-", ":", "丨", "|", "/", "／")


class SourceError(ValueError):
    """Raised when an answer source cannot be read or one of its values cannot be used."""


@dataclass
class Column:
    """A sheet column that belongs to a question; index is 1-based."""

    index: int
    header: str
    question_num: int
    suffix: str = ""


@dataclass
class RawRow:
    """The question-column values of one data row."""

    data_row_number: int
    worksheet_row_number: int
    values_by_column: dict[int, str] = field(default_factory=dict)


@dataclass
class ExportData:
    """An export file split into question columns and data rows."""

    source_path: str
    selected_format: ReverseFillFormat
    detected_format: ReverseFillFormat
    total_data_rows: int
    question_columns: dict[int, list[Column]]
    raw_rows: list[RawRow]


def load_source(source_path: str, preferred_format: str | None = None) -> ExportData:
    """Read a CSV or Excel export from disk."""
    raw_path = (source_path or "").strip()
    if not raw_path:
        raise SourceError("未提供反填数据源路径")
    path = os.path.abspath(raw_path)
    if not os.path.exists(path):
        raise SourceError(f"反填数据源不存在：{path}")
    ext = os.path.splitext(path)[1].lower()
    if ext in _XLSX_EXTENSIONS:
        rows = _read_xlsx_rows(path)
    elif ext == ".csv":
        rows = _read_csv_rows(path)
    else:
        raise SourceError(f"反填数据源格式不支持：{ext}")
    return build_export(path, rows, preferred_format)


def _read_csv_rows(path: str) -> list[list[str]]:
    try:
        handle = open(path, encoding="utf-8-sig", newline="")
    except OSError as exc:
        raise SourceError(f"读取反填 CSV 失败: {exc}") from exc
    with handle:
        try:
            return [row for row in csv.reader(handle, strict=True) if row]
        except (csv.Error, UnicodeDecodeError) as exc:
            raise SourceError(f"解析反填 CSV 失败: {exc}") from exc


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _read_xlsx_rows(path: str) -> list[list[str]]:
    try:
        with zipfile.ZipFile(path) as archive:
            sheet_path = _first_sheet_path(archive)
            shared = _shared_strings(archive)
            root = ET.fromstring(archive.read(sheet_path))
    except (zipfile.BadZipFile, KeyError, ET.ParseError, OSError, ValueError) as exc:
        if isinstance(exc, SourceError):
            raise
        raise SourceError(f"读取反填 Excel 失败: {exc}") from exc
    return _sheet_rows(root, shared)


def _first_sheet_path(archive: zipfile.ZipFile) -> str:
    workbook = ET.fromstring(archive.read("xl/workbook.xml"))
    sheets = [element for element in workbook.iter() if _local(element.tag) == "sheet"]
    if not sheets:
        raise SourceError("Excel 中没有可读取的工作表")
    rel_id = next(
        (value for key, value in sheets[0].attrib.items() if key.endswith("}id") or key == "r:id"),
        None,
    )
    fallback = "xl/worksheets/sheet1.xml"
    rels_name = "xl/_rels/workbook.xml.rels"
    if rel_id is None or rels_name not in archive.namelist():
        return fallback
    rels = ET.fromstring(archive.read(rels_name))
    for rel in rels.iter():
        if _local(rel.tag) == "Relationship" and rel.get("Id") == rel_id:
            target = rel.get("Target") or ""
            if target.startswith("/"):
                return target.lstrip("/")
            return posixpath.normpath(posixpath.join("xl", target))
    return fallback


def _shared_strings(archive: zipfile.ZipFile) -> list[str]:
    name = "xl/sharedStrings.xml"
    if name not in archive.namelist():
        return []
    root = ET.fromstring(archive.read(name))
    strings = []
    for item in root:
        if _local(item.tag) != "si":
            continue
        strings.append(_rich_text(item))
    return strings


def _rich_text(element: ET.Element) -> str:
    parts = []
    for child in element:
        tag = _local(child.tag)
        if tag == "t":
            parts.append(child.text or "")
        elif tag == "r":
            parts.extend(t.text or "" for t in child if _local(t.tag) == "t")
    return "".join(parts)


def _column_number(ref: str) -> int | None:
    letters = "".join(ch for ch in ref if ch.isalpha()).upper()
    if not letters:
        return None
    number = 0
    for ch in letters:
        number = number * 26 + (ord(ch) - ord("A") + 1)
    return number


def _cell_value(cell: ET.Element, shared: list[str]) -> str:
    cell_type = cell.get("t", "")
    value_element = next((child for child in cell if _local(child.tag) == "v"), None)
    value = value_element.text if value_element is not None and value_element.text else ""
    if cell_type == "s":
        return shared[int(value)] if value else ""
    if cell_type == "inlineStr":
        inline = next((child for child in cell if _local(child.tag) == "is"), None)
        return _rich_text(inline) if inline is not None else ""
    if cell_type == "b":
        return "TRUE" if value == "1" else "FALSE"
    return value


def _sheet_rows(root: ET.Element, shared: list[str]) -> list[list[str]]:
    cells_by_row: dict[int, dict[int, str]] = {}
    previous_row = 0
    for row in root.iter():
        if _local(row.tag) != "row":
            continue
        row_ref = row.get("r")
        row_number = int(row_ref) if row_ref else previous_row + 1
        previous_row = row_number
        cells = cells_by_row.setdefault(row_number, {})
        previous_col = 0
        for cell in row:
            if _local(cell.tag) != "c":
                continue
            col = _column_number(cell.get("r", "")) or previous_col + 1
            previous_col = col
            cells[col] = _cell_value(cell, shared)

    if not cells_by_row:
        return []
    rows: list[list[str]] = []
    for row_number in range(1, max(cells_by_row) + 1):
        cells = cells_by_row.get(row_number, {})
        values = [cells.get(col, "") for col in range(1, max(cells, default=0) + 1)]
        while values and values[-1] == "":
            values.pop()
        rows.append(values)
    while rows and not rows[-1]:
        rows.pop()
    return rows


def build_export(path: str, rows: Sequence[Sequence[str]], preferred_format: str | None = None) -> ExportData:
    """Find the question columns in the header row and collect the data rows."""
    if not rows:
        raise SourceError("数据源缺少表头，无法识别问卷列")

    question_columns: dict[int, list[Column]] = {}
    for position, header in enumerate(rows[0], start=1):
        stripped = header.strip()
        match = _QUESTION_HEADER_RE.fullmatch(stripped)
        if match is None:
            continue
        question_num = int(match.group(1))
        question_columns.setdefault(question_num, []).append(
            Column(index=position, header=stripped, question_num=question_num, suffix=match.group(2).strip())
        )
    if not question_columns:
        raise SourceError("数据源表头中没有识别到问卷题目列")

    all_columns = [column for columns in question_columns.values() for column in columns]
    raw_rows = []
    for data_row, values in enumerate(rows[1:], start=1):
        by_column = {
            column.index: values[column.index - 1].strip() if column.index - 1 < len(values) else ""
            for column in all_columns
        }
        raw_rows.append(RawRow(data_row_number=data_row, worksheet_row_number=data_row + 1, values_by_column=by_column))

    detected = detect_format(question_columns, raw_rows)
    selected = normalize_format(preferred_format)
    if selected == ReverseFillFormat.AUTO:
        selected = detected
    return ExportData(
        source_path=path,
        selected_format=selected,
        detected_format=detected,
        total_data_rows=len(raw_rows),
        question_columns=question_columns,
        raw_rows=raw_rows,
    )


def detect_format(question_columns: Mapping[int, Sequence[Column]], raw_rows: Sequence[RawRow]) -> ReverseFillFormat:
    """Guess whether the sheet holds option sequences, scores or option texts."""
    for columns in question_columns.values():
        if len(columns) <= 1:
            continue
        if any(_SEQUENCE_SUFFIX_RE.fullmatch(column.suffix.strip()) for column in columns):
            return ReverseFillFormat.WJX_SEQUENCE

    has_number = False
    has_text = False
    for row in raw_rows:
        for value in row.values_by_column.values():
            if not value:
                continue
            if _NUMBER_TEXT_RE.fullmatch(value):
                has_number = True
            else:
                has_text = True
    if has_number and not has_text:
        return ReverseFillFormat.WJX_SCORE
    return ReverseFillFormat.WJX_TEXT


def normalize_format(value: str | None) -> ReverseFillFormat:
    """Map a user-supplied format name to a known format, defaulting to auto."""
    text = (value or "").strip().lower()
    for fmt in (ReverseFillFormat.WJX_SEQUENCE, ReverseFillFormat.WJX_SCORE, ReverseFillFormat.WJX_TEXT):
        if text == fmt.value:
            return fmt
    return ReverseFillFormat.AUTO


def normalize_key(value: str) -> str:
    """Fold full-width punctuation, drop whitespace and lower-case a label."""
    text = value.strip()
    if not text:
        return ""
    text = text.translate(_KEY_REPLACEMENTS)
    return "".join(text.split()).lower()


def label_variants(value: str) -> list[str]:
    """Keys under which a label may appear: as written, without numbering, last segment."""
    text = value.strip()
    if not text:
        return []
    variants: list[str] = []

    def add(candidate: str) -> None:
        key = normalize_key(candidate)
        if key and key not in variants:
            variants.append(key)

    add(text)
    stripped = _LEADING_INDEX_RE.sub("", text, count=1).strip(" _")
    add(stripped)
    for separator in _VARIANT_SEPARATORS:
        if separator in stripped:
            add(stripped.split(separator)[-1].strip())
    return variants


def parse_one_based_index(value: str) -> int | None:
    """Parse a positive whole number such as "3" or "3.0"; otherwise None."""
    text = value.strip()
    if not _NUMBER_TEXT_RE.fullmatch(text):
        return None
    index = int(float(text))
    return index if index > 0 else None


def _option_text_index_map(option_texts: Sequence[str]) -> dict[str, int]:
    mapping: dict[str, int] = {}
    for index, option in enumerate(option_texts):
        for variant in label_variants(option):
            mapping.setdefault(variant, index)
    return mapping


def _choice(question_num: int, index: int) -> ReverseFillAnswer:
    return ReverseFillAnswer(question_num=question_num, kind=AnswerKind.CHOICE, choice_index=index)


def parse_choice_answer(
    question_num: int, raw_value: str, export_format: str, option_texts: Sequence[str]
) -> ReverseFillAnswer | None:
    """Turn a cell value into a zero-based choice; blank gives None."""
    text = raw_value.strip()
    if not text:
        return None
    if "┋" in text or "→" in text or ("〖" in text and "〗" in text):
        raise SourceError("检测到不支持的复合值")

    if export_format == ReverseFillFormat.WJX_SEQUENCE:
        index = parse_one_based_index(text)
        if index is None:
            raise SourceError(f'无法把值 "{text}" 解析为序号')
        if index - 1 >= len(option_texts):
            raise SourceError(f"序号 {index} 超出选项范围")
        return _choice(question_num, index - 1)

    option_map = _option_text_index_map(option_texts)
    for variant in label_variants(text):
        if variant in option_map:
            return _choice(question_num, option_map[variant])

    if export_format in (ReverseFillFormat.WJX_SCORE, ReverseFillFormat.WJX_TEXT):
        index = parse_one_based_index(text)
        if index is not None and index - 1 < len(option_texts):
            return _choice(question_num, index - 1)
    raise SourceError(f'无法把值 "{text}" 匹配到题目选项')