"""Tests for typed cell parsing."""

from datetime import date

import pytest

from cell_parser import parse_cell, format_float_point, format_date
from crawler_errors import ParseError, CeiErrorTypes


class TestStringAndInt:

    def test_string_is_trimmed(self):
        assert parse_cell('  PETR4 \n', 'string') == 'PETR4'

    def test_empty_string_is_preserved(self):
        assert parse_cell('', 'string') == ''
        assert parse_cell(None, 'string') == ''

    @pytest.mark.parametrize('raw,expected', [
        ('100', 100),
        ('1.234', 1234),
        ('1.234.567', 1234567),
        ('-15', -15),
    ])
    def test_int_strips_thousands_separators(self, raw, expected):
        assert parse_cell(raw, 'int') == expected

    def test_empty_int_is_absent_not_zero(self):
        assert parse_cell('', 'int') is None
        assert parse_cell('   ', 'int') is None

    def test_bad_int_raises_with_context(self):
        with pytest.raises(ParseError) as exc:
            parse_cell('12a', 'int')
        assert exc.value.raw == '12a'
        assert exc.value.kind == 'int'
        assert exc.value.type is CeiErrorTypes.PARSE_ERROR


class TestFloats:

    def test_float_uses_dot_decimal(self):
        assert parse_cell('123.45', 'float') == 123.45
        assert parse_cell('100', 'float') == 100.0

    def test_float_rejects_comma(self):
        with pytest.raises(ParseError):
            parse_cell('1,5', 'float')

    def test_float_point_locale(self):
        assert parse_cell('1.234,56', 'floatPoint') == 1234.56
        assert parse_cell('0,75', 'floatPoint') == 0.75
        assert parse_cell('12', 'floatPoint') == 12.0

    @pytest.mark.parametrize('raw', ['1.23', '1,234.56', '12.34.5', '1.2345,6', 'abc'])
    def test_float_point_rejects_ambiguous_input(self, raw):
        with pytest.raises(ParseError):
            parse_cell(raw, 'floatPoint')

    def test_float_point_round_trips_source_convention(self):
        for thousands in (1, 9, 12, 345):
            for body in ('000', '234', '999'):
                for cents in ('00', '05', '56', '99'):
                    text = f'{thousands}.{body},{cents}'
                    value = parse_cell(text, 'floatPoint')
                    assert value == pytest.approx(int(f'{thousands}{body}') + int(cents) / 100)
                    assert format_float_point(value) == text

    def test_empty_float_point_is_absent(self):
        assert parse_cell('', 'floatPoint') is None


class TestDateAndBoolean:

    def test_date(self):
        assert parse_cell('15/03/2023', 'date') == date(2023, 3, 15)

    def test_empty_date_is_absent(self):
        assert parse_cell('', 'date') is None

    @pytest.mark.parametrize('raw', ['2023-03-15', '31/02/2023', '15/3/23x'])
    def test_bad_date(self, raw):
        with pytest.raises(ParseError):
            parse_cell(raw, 'date')

    def test_format_date(self):
        assert format_date(date(2010, 1, 1)) == '01/01/2010'

    @pytest.mark.parametrize('raw,expected', [
        ('Sim', True), ('S', True), ('sim', True),
        ('Não', False), ('N', False), ('NAO', False),
    ])
    def test_boolean_tokens(self, raw, expected):
        assert parse_cell(raw, 'boolean') is expected

    @pytest.mark.parametrize('raw', ['Talvez', '', '1'])
    def test_other_boolean_tokens_are_errors(self, raw):
        with pytest.raises(ParseError):
            parse_cell(raw, 'boolean')


def test_unknown_kind():
    with pytest.raises(ValueError):
        parse_cell('x', 'decimal')
