"""
table_normalizer.py

Turns the table Gemini reads off an attendance sheet into a rectangular grid
and appends an "Attendance %" column.

Two table shapes are accepted:
    - structured: {"headers": [[...], [...]], "data": [{label: value}, ...]}
    - flat:       [{key: value}, ...]   (a single header row is inferred)

Only cells exactly equal to "P" count as present.
"""
import logging

from errors import FormatError

logger = logging.getLogger(__name__)

PRESENT_MARKER = "P"
ATTENDANCE_HEADER = "Attendance %"
# 1-based; columns 1 and 2 are roll number and name
ATTENDANCE_START = 3


def _is_present(value):
    return isinstance(value, str) and value == PRESENT_MARKER


def _project_row(row, columns):
    if not isinstance(row, dict):
        raise FormatError("Invalid JSON format: table rows must be objects")
    return [row.get(key) if isinstance(key, str) else None for key in columns]


def _fit_width(header_row, width):
    cells = list(header_row[:width])
    return cells + [None] * (width - len(cells))


def _structured_grid(table):
    header_rows = table["headers"]
    if not all(isinstance(header_row, list) for header_row in header_rows):
        raise FormatError("Invalid JSON format: header rows must be lists")

    columns = list(header_rows[0])
    width = len(columns)
    grid = [columns]
    for header_row in header_rows[1:]:
        if len(header_row) > width:
            logger.warning("Header row has %s cells, cutting to %s", len(header_row), width)
        grid.append(_fit_width(header_row, width))

    grid.extend(_project_row(row, columns) for row in table["data"])
    return grid, len(header_rows)


def _flat_grid(rows):
    columns = []
    seen = set()
    for row in rows:
        if not isinstance(row, dict):
            raise FormatError("Invalid JSON format: table rows must be objects")
        for key in row:
            if key not in seen:
                seen.add(key)
                columns.append(key)

    grid = [columns]
    grid.extend(_project_row(row, columns) for row in rows)
    return grid, 1


def build_grid(table):
    """Return (grid, header_row_count) for a transcribed table."""
    if isinstance(table, dict):
        headers = table.get("headers")
        data = table.get("data")
        if isinstance(headers, list) and headers and isinstance(data, list):
            return _structured_grid(table)
    elif isinstance(table, list):
        return _flat_grid(table)
    raise FormatError("Invalid JSON format")


def find_last_lecture_column(data_rows, total_columns):
    """Rightmost 1-based column holding any present mark, or total_columns if none does."""
    for col in range(total_columns, ATTENDANCE_START - 1, -1):
        if any(_is_present(row[col - 1]) for row in data_rows):
            return col
    return total_columns


def format_percentage(present_count, lecture_count):
    percentage = (present_count / lecture_count) * 100 if lecture_count > 0 else 0
    return f"{percentage:.2f}%"


def add_attendance_column(grid, header_row_count):
    """Append the attendance column in place. Header rows get the label or a blank."""
    total_columns = len(grid[0])
    data_rows = grid[header_row_count:]

    last_lecture_col = find_last_lecture_column(data_rows, total_columns)
    lecture_count = last_lecture_col - ATTENDANCE_START + 1

    grid[0].append(ATTENDANCE_HEADER)
    for header_row in grid[1:header_row_count]:
        header_row.append("")

    for row in data_rows:
        present_count = sum(
            1 for value in row[ATTENDANCE_START - 1:last_lecture_col] if _is_present(value)
        )
        row.append(format_percentage(present_count, lecture_count))

    logger.debug(
        "Attendance computed rows=%s last_lecture_col=%s lecture_count=%s",
        len(data_rows),
        last_lecture_col,
        lecture_count,
    )
    return grid


def normalize_table(table):
    """Build the grid for `table` and append the attendance column."""
    grid, header_row_count = build_grid(table)
    return add_attendance_column(grid, header_row_count)
