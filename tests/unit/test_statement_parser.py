"""Unit tests for statement decoding and row parsing"""

import pytest
from datetime import date
from statement_gateway.domain.exceptions import EmptyStatement, MalformedRow
from statement_gateway.domain.models import ColumnMapping
from statement_gateway.domain.statement_parser import (
    decode_upload,
    detect_delimiter,
    parse_amount_cents,
    parse_statement,
    read_rows,
)

NUBANK_MAPPING = ColumnMapping(0, 1, 2, format_name="nubank_credit_card")


@pytest.mark.parametrize(
    "text,expected",
    [
        ("620.73", 62073),
        ("-253.82", -25382),
        ("-253,82", -25382),
        ("R$ 1.234,56", 123456),
        ("1,234.56", 123456),
        ("+15", 1500),
        ("-7.5", -750),
    ],
)
def test_parse_amount_cents(text, expected):
    assert parse_amount_cents(text) == expected


@pytest.mark.parametrize("text", ["", "abc", "12.3.4", "--5", "10.005", "1.234", "1,234"])
def test_parse_amount_cents_invalid(text):
    with pytest.raises(ValueError):
        parse_amount_cents(text)


def test_detect_delimiter():
    assert detect_delimiter("Data;Descrição;Valor") == ";"
    assert detect_delimiter("date,title,amount") == ","
    assert detect_delimiter("date\ttitle\tamount") == "\t"
    assert detect_delimiter("single") == ","


def test_decode_strips_utf8_bom():
    text = decode_upload("\ufeffdate,title,amount\n".encode("utf-8"))
    assert text.startswith("date")


def test_decode_latin1():
    raw = "Data;Descrição;Valor\n".encode("latin-1")
    assert "Descrição" in decode_upload(raw, "latin-1")


def test_decode_wrong_encoding_is_malformed():
    raw = "Descrição".encode("latin-1")
    with pytest.raises(MalformedRow):
        decode_upload(raw, "utf-8")


def test_decode_unknown_encoding_is_malformed():
    with pytest.raises(MalformedRow):
        decode_upload(b"date,title,amount\n", "not-a-codec")


def test_decode_blank_upload_is_empty():
    with pytest.raises(EmptyStatement):
        decode_upload(b"   \n")


def test_read_rows_semicolon_with_quoted_description():
    text = 'Data;Descrição;Valor\n05/11/2025;"Loja; Centro";-1.234,56\n'
    headers, rows, warnings = read_rows(text)

    assert headers == ["Data", "Descrição", "Valor"]
    assert rows == [["05/11/2025", "Loja; Centro", "-1.234,56"]]
    assert warnings == []


def test_read_rows_keeps_values_as_text():
    headers, rows, _ = read_rows("date,title,amount\n2025-10-08,007,0100.50\n")
    assert rows[0] == ["2025-10-08", "007", "0100.50"]


def test_read_rows_skips_blank_rows_with_warning():
    text = "date,title,amount\n2025-10-08,A,1.00\n\n2025-10-09,B,2.00\n"
    _, rows, warnings = read_rows(text)

    assert [row[1] for row in rows] == ["A", "B"]
    assert len(warnings) == 1


def test_read_rows_extra_fields_is_malformed():
    with pytest.raises(MalformedRow):
        read_rows("date,title,amount\n2025-10-08,A,1.00,extra\n")


def test_parse_statement_keeps_file_order_and_sign():
    rows = [
        ["2025-10-20", "Estorno de compra", "-253.82"],
        ["2025-10-08", "Mercado", "620.73"],
    ]
    lines = parse_statement(["date", "title", "amount"], rows, NUBANK_MAPPING)

    assert [line.raw_description for line in lines] == ["Estorno de compra", "Mercado"]
    assert lines[0].amount_cents == -25382
    assert lines[1].date == date(2025, 10, 8)


def test_parse_statement_day_first_dates():
    mapping = ColumnMapping(0, 3, 1)
    lines = parse_statement(["Data", "Valor", "Identificador", "Descrição"], [["05/11/2025", "-50,00", "x1", "Pix"]], mapping)

    assert lines[0].date == date(2025, 11, 5)
    assert lines[0].amount_cents == -5000


def test_parse_statement_header_only_is_empty():
    with pytest.raises(EmptyStatement):
        parse_statement(["date", "title", "amount"], [], NUBANK_MAPPING)


def test_parse_statement_bad_date_names_row():
    rows = [["2025-10-08", "A", "1.00"], ["31/02/2025", "B", "2.00"]]
    with pytest.raises(MalformedRow) as exc_info:
        parse_statement(["date", "title", "amount"], rows, NUBANK_MAPPING)

    assert exc_info.value.row_number == 2


def test_parse_statement_bad_amount_fails_whole_import():
    rows = [["2025-10-08", "A", "1.00"], ["2025-10-09", "B", "dez reais"]]
    with pytest.raises(MalformedRow):
        parse_statement(["date", "title", "amount"], rows, NUBANK_MAPPING)


def test_parse_statement_short_row():
    with pytest.raises(MalformedRow):
        parse_statement(["date", "title", "amount"], [["2025-10-08", "A"]], NUBANK_MAPPING)


def test_parse_statement_sub_cent_amount_is_malformed():
    rows = [["2025-10-08", "A", "1.00"], ["2025-10-09", "B", "1.234"]]
    with pytest.raises(MalformedRow) as exc_info:
        parse_statement(["date", "title", "amount"], rows, NUBANK_MAPPING)

    assert exc_info.value.row_number == 2
