from dataclasses import dataclass, replace

from dbpam.grid import ResultGrid

ABSOLUTE_CEILING = 75
DEFAULT_COLUMN_CAP = 40
HORIZONTAL_PADDING = 2
COLUMN_SEPARATOR = 1
# title, sql, header, header rule, preview, status, prompt, spare
VERTICAL_RESERVED = 8


def column_widths(grid: ResultGrid, cap: int = DEFAULT_COLUMN_CAP) -> tuple[int, ...]:
    limit = max(1, min(cap, ABSOLUTE_CEILING))
    widths = []
    for index, column in enumerate(grid.columns):
        longest = max((len(row[index].display_value) for row in grid.rows), default=0)
        widths.append(max(1, min(max(len(column.name), longest), limit)))
    return tuple(widths)


@dataclass(frozen=True)
class Viewport:
    """Cursor, visual anchor and scroll offsets over a grid.

    Every navigation method returns a new Viewport; on an empty grid it
    returns the same one.
    """

    row_count: int
    column_count: int
    widths: tuple[int, ...]
    terminal_width: int = 80
    terminal_height: int = 24
    row: int = 0
    col: int = 0
    offset_x: int = 0
    offset_y: int = 0
    anchor_row: int = 0
    anchor_col: int = 0
    visual: bool = False

    @classmethod
    def for_grid(
        cls,
        grid: ResultGrid,
        terminal_width: int = 80,
        terminal_height: int = 24,
        cap: int = DEFAULT_COLUMN_CAP,
    ) -> "Viewport":
        return cls(
            row_count=grid.row_count,
            column_count=grid.column_count,
            widths=column_widths(grid, cap),
            terminal_width=terminal_width,
            terminal_height=terminal_height,
        )

    @property
    def is_empty(self) -> bool:
        return self.row_count == 0 or self.column_count == 0

    @property
    def visible_rows(self) -> int:
        return max(1, self.terminal_height - VERTICAL_RESERVED)

    def visible_columns(self) -> list[int]:
        available = self.terminal_width - HORIZONTAL_PADDING
        columns: list[int] = []
        used = 0
        for index in range(self.offset_x, len(self.widths)):
            needed = self.widths[index] + (COLUMN_SEPARATOR if columns else 0)
            if columns and used + needed > available:
                break
            columns.append(index)
            used += needed
        return columns

    def visible_row_indices(self) -> range:
        return range(self.offset_y, min(self.row_count, self.offset_y + self.visible_rows))

    def move_to(self, row: int, col: int) -> "Viewport":
        if self.is_empty:
            return self
        row = min(max(row, 0), self.row_count - 1)
        col = min(max(col, 0), self.column_count - 1)
        return replace(self, row=row, col=col)._follow()

    def move(self, delta_row: int, delta_col: int) -> "Viewport":
        return self.move_to(self.row + delta_row, self.col + delta_col)

    def first_row(self) -> "Viewport":
        return self.move_to(0, self.col)

    def last_row(self) -> "Viewport":
        return self.move_to(self.row_count - 1, self.col)

    def first_column(self) -> "Viewport":
        return self.move_to(self.row, 0)

    def last_column(self) -> "Viewport":
        return self.move_to(self.row, self.column_count - 1)

    def page_up(self) -> "Viewport":
        return self.move(-self.visible_rows, 0)

    def page_down(self) -> "Viewport":
        return self.move(self.visible_rows, 0)

    def toggle_visual(self) -> "Viewport":
        if self.visual:
            return self.clear_visual()
        if self.is_empty:
            return self
        return replace(self, visual=True, anchor_row=self.row, anchor_col=self.col)

    def clear_visual(self) -> "Viewport":
        return replace(self, visual=False, anchor_row=0, anchor_col=0)

    def selection_bounds(self) -> tuple[int, int, int, int] | None:
        """(row_start, row_end, col_start, col_end), inclusive."""
        if self.is_empty:
            return None
        if not self.visual:
            return self.row, self.row, self.col, self.col
        return (
            min(self.anchor_row, self.row),
            max(self.anchor_row, self.row),
            min(self.anchor_col, self.col),
            max(self.anchor_col, self.col),
        )

    def is_selected(self, row: int, col: int) -> bool:
        bounds = self.selection_bounds()
        if bounds is None:
            return False
        row_start, row_end, col_start, col_end = bounds
        return row_start <= row <= row_end and col_start <= col <= col_end

    def resize(self, terminal_width: int, terminal_height: int) -> "Viewport":
        resized = replace(
            self, terminal_width=terminal_width, terminal_height=terminal_height
        )
        if resized.is_empty:
            return resized
        return resized._follow()

    def with_shape(self, row_count: int, widths: tuple[int, ...]) -> "Viewport":
        """Adopt a grid's new row count and widths, clamping the cursor."""
        reshaped = replace(
            self,
            row_count=row_count,
            column_count=len(widths),
            widths=widths,
            visual=False,
        )
        if reshaped.is_empty:
            return replace(reshaped, row=0, col=0, offset_x=0, offset_y=0)
        return reshaped.move_to(reshaped.row, reshaped.col)

    def _follow(self) -> "Viewport":
        offset_y = self.offset_y
        if self.row < offset_y:
            offset_y = self.row
        elif self.row >= offset_y + self.visible_rows:
            offset_y = self.row - self.visible_rows + 1
        offset_y = min(offset_y, max(0, self.row_count - 1))
        scrolled = replace(self, offset_y=offset_y, offset_x=min(self.offset_x, self.col))
        while self.col not in scrolled.visible_columns():
            scrolled = replace(scrolled, offset_x=scrolled.offset_x + 1)
        return scrolled
