from __future__ import annotations

from leadtables.leads.csv_parse import parse_csv, parse_csv_line


def test_parse_single_row() -> None:
    rows = parse_csv("business_name,contact\nAcme,foo@bar.com")

    assert rows == [{"business_name": "Acme", "contact": "foo@bar.com"}]


def test_quoted_comma_and_escaped_quotes() -> None:
    rows = parse_csv('business_name,notes\n"A, B","has ""quotes"""')

    assert rows == [{"business_name": "A, B", "notes": 'has "quotes"'}]


def test_fewer_than_two_non_blank_lines_yields_nothing() -> None:
    assert parse_csv("") == []
    assert parse_csv("business_name,contact\n") == []
    assert parse_csv("\n\n  \nbusiness_name\n\n") == []


def test_line_endings_and_blank_lines() -> None:
    text = "\r\nbusiness_name,stage\r\n\r\nAcme,New\rGlobex,Won\n   \nInitech,Lost\n"

    rows = parse_csv(text)

    assert [row["business_name"] for row in rows] == ["Acme", "Globex", "Initech"]
    assert [row["stage"] for row in rows] == ["New", "Won", "Lost"]


def test_short_rows_are_padded_and_long_rows_truncated() -> None:
    rows = parse_csv("a,b,c\n1\n1,2,3,4,5")

    assert rows[0] == {"a": "1", "b": "", "c": ""}
    assert rows[1] == {"a": "1", "b": "2", "c": "3"}


def test_cells_are_trimmed() -> None:
    rows = parse_csv(" business_name , contact \n  Acme  ,  a@b.co ")

    assert rows == [{"business_name": "Acme", "contact": "a@b.co"}]


def test_malformed_quoting_does_not_raise() -> None:
    assert parse_csv_line('Acme,"unterminated, still going') == ["Acme", "unterminated, still going"]
    assert parse_csv_line('a"b",c') == ["ab", "c"]
    assert parse_csv_line('a"b,c') == ["ab,c"]


def test_quoted_field_cannot_span_lines() -> None:
    rows = parse_csv('business_name,notes\n"Acme","first\nsecond"')

    assert len(rows) == 2
    assert rows[0]["notes"] == "first"
    assert rows[1]["business_name"] == "second"
