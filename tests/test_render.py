from dbpam.cell_editor import CellEditor
from dbpam.controller import Controller, Severity
from dbpam.render import (
    ELLIPSIS,
    EMPTY_TEXT,
    SEPARATOR,
    format_cell,
    render_frame,
    status_line,
    status_text,
)
from conftest import LONG_TEXT_VALUE, FakeClipboard, FakeEditor, make_grid


def _controller(grid, width: int = 80, height: int = 24) -> Controller:
    editor = FakeEditor()
    return Controller(
        grid,
        cell_editor=CellEditor(editor),
        clipboard=FakeClipboard(),
        editor=editor,
        terminal_width=width,
        terminal_height=height,
        clock=lambda: 0.0,
    )


def test_format_cell_pads_and_truncates() -> None:
    assert format_cell("abc", 5) == "abc  "
    assert format_cell("abcdef", 4) == "abc" + ELLIPSIS
    assert format_cell("a\nb", 3) == "a b"


def test_status_line_reports_position_and_banner() -> None:
    grid = make_grid(["a", "b"], [[1, 2], [3, 4]])
    grid.elapsed = 0.0123
    controller = _controller(grid)
    controller.viewport = controller.viewport.move(1, 1)
    controller.set_status("Copied 1 cell as CSV to clipboard", Severity.SUCCESS)
    line = status_line(controller)
    assert line.startswith("0.012s | Row 2/2, Col 2/2 | ")
    assert line.endswith(" | Copied 1 cell as CSV to clipboard")


def test_empty_grid_shows_placeholder() -> None:
    controller = _controller(make_grid(["id"], []))
    plain = render_frame(controller).plain
    assert EMPTY_TEXT in plain
    assert "Row 0/0, Col 0/1" in plain


def test_long_values_are_truncated_in_grid() -> None:
    grid = make_grid(["note"], [[LONG_TEXT_VALUE]])
    controller = _controller(grid, width=200)
    lines = render_frame(controller).plain.splitlines()
    row_line = next(line for line in lines if line.startswith(" This is"))
    assert row_line.rstrip().endswith(ELLIPSIS)
    assert len(row_line.strip()) == 40


def test_wide_grid_renders_only_whole_columns() -> None:
    headers = [f"column_{index}" for index in range(12)]
    grid = make_grid(headers, [["x" * 15 for _ in headers]])
    controller = _controller(grid, width=60)
    header_line = render_frame(controller).plain.splitlines()[2]
    visible = controller.viewport.visible_columns()
    assert header_line.count(SEPARATOR) == len(visible) - 1
    assert visible == [0, 1, 2]
    assert len(header_line) <= 60
    assert "column_3" not in header_line


def test_null_cells_render_as_null() -> None:
    grid = make_grid(["a", "b"], [["x", None]])
    plain = render_frame(_controller(grid)).plain
    assert "NULL" in plain


def test_clipped_banner_keeps_its_severity_style() -> None:
    controller = _controller(make_grid(["a"], [[1]]), width=120)
    controller.set_status("x" * 80, Severity.ERROR)
    text = status_text(controller, 120)
    banner_start = 1 + len(status_line(controller)) - 80
    assert len(text.plain) < len(status_line(controller))
    assert [(span.start, str(span.style)) for span in text.spans] == [
        (banner_start, "bold red")
    ]
    assert text.plain[banner_start:].strip(ELLIPSIS).strip("x") == ""
