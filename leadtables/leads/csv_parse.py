"""Line-oriented CSV tokenizer for user supplied lead exports.

The stdlib ``csv`` module is deliberately not used here: quoted fields may not span physical
lines, blank lines are dropped anywhere in the file, and malformed quoting never raises.
"""

from __future__ import annotations

CsvRow = dict[str, str]


def parse_csv_line(line: str) -> list[str]:
    cells: list[str] = []
    current: list[str] = []
    in_quotes = False
    index = 0
    length = len(line)

    while index < length:
        char = line[index]
        if char == '"':
            if in_quotes and index + 1 < length and line[index + 1] == '"':
                current.append('"')
                index += 2
                continue
            in_quotes = not in_quotes
        elif char == "," and not in_quotes:
            cells.append("".join(current))
            current = []
        else:
            current.append(char)
        index += 1

    cells.append("".join(current))
    return [cell.strip() for cell in cells]


def parse_csv(csv_text: str) -> list[CsvRow]:
    normalized = csv_text.replace("\r\n", "\n").replace("\r", "\n")
    lines = [line for line in normalized.split("\n") if line.strip()]
    if len(lines) < 2:
        return []

    headers = parse_csv_line(lines[0])
    rows: list[CsvRow] = []
    for line in lines[1:]:
        values = parse_csv_line(line)
        row: CsvRow = {}
        for position, header in enumerate(headers):
            row[header] = values[position].strip() if position < len(values) else ""
        rows.append(row)
    return rows
