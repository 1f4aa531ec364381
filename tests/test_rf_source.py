import os
import zipfile

import pytest

from surveycore.records import AnswerKind, ReverseFillFormat
from surveycore.rf_source import (
    Column,
    RawRow,
    SourceError,
    build_export,
    detect_format,
    label_variants,
    load_source,
    normalize_format,
    normalize_key,
    parse_choice_answer,
    parse_one_based_index,
)


def test_build_export_finds_question_columns():
    rows = [["1、Color", "2、Comment", "name"], ["B", " hello ", "x"]]
    export = build_export("/data/x.csv", rows, "auto")
    assert sorted(export.question_columns) == [1, 2]
    color = export.question_columns[1][0]
    assert color.index == 1
    assert color.header == "1、Color"
    assert color.suffix == "Color"
    assert export.total_data_rows == len(rows) - 1
    row = export.raw_rows[0]
    assert row.values_by_column == {1: "B", 2: "hello"}
    assert row.worksheet_row_number == row.data_row_number + 1


def test_build_export_short_row_yields_blank():
    export = build_export("p", [["1、A", "2、B"], ["x"]], None)
    assert export.raw_rows[0].values_by_column[2] == ""


def test_build_export_requires_header():
    with pytest.raises(SourceError):
        build_export("p", [], None)


def test_build_export_requires_question_columns():
    with pytest.raises(SourceError):
        build_export("p", [["name", "age"], ["a", "b"]], None)


def test_build_export_respects_preferred_format():
    export = build_export("p", [["1、Q"], ["3"], ["4"]], "wjx_text")
    assert export.detected_format == ReverseFillFormat.WJX_SCORE
    assert export.selected_format == ReverseFillFormat.WJX_TEXT


def test_detect_format_sequence_suffix():
    columns = {
        3: [
            Column(index=1, header="3、(选项1)", question_num=3, suffix="(选项1)"),
            Column(index=2, header="3、(选项2)", question_num=3, suffix="(选项2)"),
        ]
    }
    assert detect_format(columns, []) == ReverseFillFormat.WJX_SEQUENCE


def test_detect_format_numbers_and_text():
    columns = {1: [Column(index=1, header="1、Q", question_num=1, suffix="Q")]}
    numeric = [RawRow(1, 2, {1: "2"}), RawRow(2, 3, {1: "1.0"}), RawRow(3, 4, {1: ""})]
    assert detect_format(columns, numeric) == ReverseFillFormat.WJX_SCORE
    mixed = numeric + [RawRow(4, 5, {1: "B"})]
    assert detect_format(columns, mixed) == ReverseFillFormat.WJX_TEXT
    assert detect_format(columns, []) == ReverseFillFormat.WJX_TEXT


def test_normalize_format():
    assert normalize_format(" WJX_Score ") == ReverseFillFormat.WJX_SCORE
    assert normalize_format("wjx_sequence") == ReverseFillFormat.WJX_SEQUENCE
    assert normalize_format("bogus") == ReverseFillFormat.AUTO
    assert normalize_format(None) == ReverseFillFormat.AUTO


def test_normalize_key_folds_width_and_space():
    assert normalize_key("（选项 一）：X") == normalize_key("(选项一):x")
    assert normalize_key("   ") == ""


def test_label_variants_strip_numbering_and_segments():
    variants = label_variants("(1) 非常满意")
    assert variants[0] == normalize_key("(1) 非常满意")
    assert "非常满意" in variants
    assert "b" in label_variants("A-B")
    assert label_variants("") == []
    assert len(variants) == len(set(variants))


def test_parse_one_based_index():
    assert parse_one_based_index("3") == 3
    assert parse_one_based_index(" 2.0 ") == 2
    assert parse_one_based_index("0") is None
    assert parse_one_based_index("1.5") is None
    assert parse_one_based_index("abc") is None


def test_parse_choice_answer_by_text():
    answer = parse_choice_answer(1, "B", "wjx_text", ["A", "B"])
    assert answer.kind == AnswerKind.CHOICE
    assert answer.choice_index == 1
    assert answer.question_num == 1


def test_parse_choice_answer_numeric_fallback():
    answer = parse_choice_answer(1, "1", ReverseFillFormat.WJX_TEXT, ["A", "B"])
    assert answer.choice_index == 0


def test_parse_choice_answer_sequence():
    assert parse_choice_answer(4, "2", ReverseFillFormat.WJX_SEQUENCE, ["x", "y"]).choice_index == 1
    with pytest.raises(SourceError):
        parse_choice_answer(4, "3", ReverseFillFormat.WJX_SEQUENCE, ["x", "y"])
    with pytest.raises(SourceError):
        parse_choice_answer(4, "y", ReverseFillFormat.WJX_SEQUENCE, ["x", "y"])


def test_parse_choice_answer_errors_and_blank():
    assert parse_choice_answer(1, "  ", "wjx_text", ["A"]) is None
    with pytest.raises(SourceError):
        parse_choice_answer(1, "A┋B", "wjx_text", ["A", "B"])
    with pytest.raises(SourceError):
        parse_choice_answer(1, "Z", "wjx_text", ["A", "B"])
    with pytest.raises(SourceError):
        parse_choice_answer(1, "5", "wjx_text", ["A", "B"])


def test_load_source_csv(tmp_path):
    path = tmp_path / "samples.csv"
    path.write_text("1、Color,2、Comment\nB,hello\n1,world\n", encoding="utf-8")
    export = load_source(str(path), "wjx_text")
    assert export.source_path == os.path.abspath(str(path))
    assert export.total_data_rows == 2
    assert export.selected_format == ReverseFillFormat.WJX_TEXT
    assert export.raw_rows[0].values_by_column == {1: "B", 2: "hello"}
    assert export.raw_rows[1].values_by_column == {1: "1", 2: "world"}


def test_load_source_errors(tmp_path):
    with pytest.raises(SourceError):
        load_source("  ", None)
    with pytest.raises(SourceError):
        load_source(str(tmp_path / "missing.csv"), None)
    other = tmp_path / "data.txt"
    other.write_text("x", encoding="utf-8")
    with pytest.raises(SourceError):
        load_source(str(other), None)
    broken = tmp_path / "broken.xlsx"
    broken.write_bytes(b"not a zip")
    with pytest.raises(SourceError):
        load_source(str(broken), None)


def _write_xlsx(path):
    workbook = (
        '<workbook xmlns:r="urn:rel"><sheets>'
        '<sheet name="S" sheetId="1" r:id="rId1"/></sheets></workbook>'
    )
    rels = '<Relationships><Relationship Id="rId1" Target="worksheets/sheet1.xml"/></Relationships>'
    shared = "<sst><si><t>1、Color</t></si><si><t>B</t></si></sst>"
    sheet = (
        "<worksheet><sheetData>"
        '<row r="1"><c r="A1" t="s"><v>0</v></c>'
        '<c r="B1" t="inlineStr"><is><t>2、Score</t></is></c></row>'
        '<row r="2"><c r="A2" t="s"><v>1</v></c><c r="B2"><v>5</v></c></row>'
        "</sheetData></worksheet>"
    )
    with zipfile.ZipFile(path, "w") as archive:
        archive.writestr("xl/workbook.xml", workbook)
        archive.writestr("xl/_rels/workbook.xml.rels", rels)
        archive.writestr("xl/sharedStrings.xml", shared)
        archive.writestr("xl/worksheets/sheet1.xml", sheet)


def test_load_source_xlsx(tmp_path):
    path = tmp_path / "samples.xlsx"
    _write_xlsx(path)
    export = load_source(str(path), "auto")
    assert sorted(export.question_columns) == [1, 2]
    assert export.question_columns[2][0].header == "2、Score"
    assert export.total_data_rows == 1
    assert export.raw_rows[0].values_by_column == {1: "B", 2: "5"}
    assert export.detected_format == ReverseFillFormat.WJX_TEXT


def test_load_source_xlsx_without_sheets(tmp_path):
    path = tmp_path / "empty.xlsx"
    with zipfile.ZipFile(path, "w") as archive:
        archive.writestr("xl/workbook.xml", "<workbook><sheets/></workbook>")
    with pytest.raises(SourceError):
        load_source(str(path), None)