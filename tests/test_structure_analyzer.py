import pytest

from stages.s1_structure import StructureAnalyzer
from core.models import SheetGrid
from core.enums import AIType, GroupKind

from conftest import HEADER, sheet_rows


def grid_of(rows) -> SheetGrid:
    return SheetGrid(values=rows)


def test_single_group_with_default_layout():
    grid = grid_of(sheet_rows(HEADER, [["1", "", "東京の人口は？", ""]]))

    result = StructureAnalyzer().analyze(grid)

    assert result.special_rows.menu_row == 1
    assert result.special_rows.function_row == 4
    assert result.warnings == []
    assert len(result.column_groups) == 1
    group = result.column_groups[0]
    assert group.kind == GroupKind.SINGLE
    assert group.prompt_columns == ["C"]
    assert group.answer_map == {AIType.CHATGPT: "D"}
    assert group.group_id == "single_C"


def test_three_type_group_with_log_and_report():
    grid = grid_of([
        ["メニュー", "", "ログ", "プロンプト", "ChatGPT回答", "Claude回答", "Gemini回答", "レポート化"],
        ["AI", "", "", "3種類", "", "", "", ""],
        ["モデル", "", "", "", "", "", "", ""],
        ["機能", "", "", "", "", "", "", ""],
        ["1", "", "", "質問", "", "", "", ""],
    ])

    result = StructureAnalyzer().analyze(grid)

    assert len(result.column_groups) == 1
    group = result.column_groups[0]
    assert group.kind == GroupKind.THREE_TYPE
    assert group.log_column == "C"
    assert group.report_column == "H"
    assert [answer.ai_type for answer in group.answer_columns] == [
        AIType.CHATGPT, AIType.CLAUDE, AIType.GEMINI,
    ]
    assert group.answer_map == {AIType.CHATGPT: "E", AIType.CLAUDE: "F", AIType.GEMINI: "G"}
    assert (group.first_index, group.last_index) == (3, 8)


def test_multiple_prompt_columns_belong_to_one_group():
    grid = grid_of([
        ["メニュー", "", "プロンプト", "プロンプト2", "プロンプト3", "回答"],
        ["AI", "", "Claude", "", "", ""],
        ["モデル", "", "", "", "", ""],
        ["機能", "", "", "", "", ""],
    ])

    group = StructureAnalyzer().analyze(grid).column_groups[0]

    assert group.prompt_columns == ["C", "D", "E"]
    assert group.answer_map == {AIType.CLAUDE: "F"}


def test_two_groups_in_column_order():
    grid = grid_of([
        ["メニュー", "", "プロンプト", "回答", "プロンプト", "回答"],
        ["AI", "", "ChatGPT", "", "Gemini", ""],
        ["モデル", "", "", "", "", ""],
        ["機能", "", "", "", "", ""],
    ])

    groups = StructureAnalyzer().analyze(grid).column_groups

    assert [group.group_id for group in groups] == ["single_C", "single_E"]
    assert groups[1].answer_map == {AIType.GEMINI: "F"}


def test_model_and_function_rows_are_read_from_prompt_column():
    grid = grid_of([
        ["メニュー", "", "プロンプト", "回答"],
        ["AI", "", "ChatGPT", ""],
        ["モデル", "", "o3", ""],
        ["機能", "", "Deep Research", ""],
    ])

    answer = StructureAnalyzer().analyze(grid).column_groups[0].answer_columns[0]

    assert answer.model == "o3"
    assert answer.function == "Deep Research"


def test_missing_header_labels_fall_back_to_defaults():
    grid = grid_of([
        ["", "", "prompt", "answer"],
        ["", "", "chatgpt", ""],
        ["", "", "", ""],
        ["", "", "", ""],
    ])

    result = StructureAnalyzer().analyze(grid)

    assert result.special_rows.missing == ["menu", "ai", "model", "function"]
    assert len(result.warnings) == 4
    assert result.column_groups[0].answer_map == {AIType.CHATGPT: "D"}


def test_misplaced_three_type_labels_are_bound_by_label():
    grid = grid_of([
        ["メニュー", "", "プロンプト", "回答", "回答", "回答"],
        ["AI", "", "3種類", "Gemini", "ChatGPT", "Claude"],
        ["モデル", "", "", "", "", ""],
        ["機能", "", "", "", "", ""],
    ])

    result = StructureAnalyzer().analyze(grid)

    group = result.column_groups[0]
    assert group.kind == GroupKind.THREE_TYPE
    assert group.answer_map == {AIType.CHATGPT: "E", AIType.CLAUDE: "F", AIType.GEMINI: "D"}
    assert any("expected" in warning for warning in result.warnings)


def test_three_type_with_two_answer_columns_degrades_to_single():
    grid = grid_of([
        ["メニュー", "", "プロンプト", "回答", "回答"],
        ["AI", "", "3種類", "", ""],
        ["モデル", "", "", "", ""],
        ["機能", "", "", "", ""],
    ])

    result = StructureAnalyzer().analyze(grid)

    assert result.column_groups[0].kind == GroupKind.SINGLE
    assert any("treated as single" in warning for warning in result.warnings)


def test_prompt_without_answer_column_is_ignored():
    grid = grid_of([
        ["メニュー", "", "プロンプト", "", "プロンプト", "回答"],
        ["AI", "", "ChatGPT", "", "ChatGPT", ""],
        ["モデル", "", "", "", "", ""],
        ["機能", "", "", "", "", ""],
    ])

    groups = StructureAnalyzer().analyze(grid).column_groups

    assert [group.prompt_columns for group in groups] == [["E"]]


@pytest.mark.asyncio
async def test_execute_rejects_empty_grid():
    analyzer = StructureAnalyzer()

    assert analyzer.validate_input(SheetGrid(values=[])) is False
    result = await analyzer.execute(grid_of(sheet_rows(HEADER, [])))
    assert result.column_groups[0].group_id == "single_C"
