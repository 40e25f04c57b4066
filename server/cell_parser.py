import re
from datetime import datetime

from crawler_errors import ParseError

STRING = 'string'
INT = 'int'
FLOAT = 'float'
FLOAT_POINT = 'floatPoint'
DATE = 'date'
BOOLEAN = 'boolean'

SCALAR_TYPES = (STRING, INT, FLOAT, FLOAT_POINT, DATE, BOOLEAN)

DATE_FORMAT = '%d/%m/%Y'

TRUE_TOKENS = {'sim', 's'}
FALSE_TOKENS = {'não', 'nao', 'n'}

_INT_RE = re.compile(r'^[-+]?\d{1,3}(\.\d{3})+$|^[-+]?\d+$')
_FLOAT_RE = re.compile(r'^[-+]?(\d+\.?\d*|\.\d+)$')
# 1.234,56 / 1234,56 / 1234 -- a dot is only ever a thousands separator
_FLOAT_POINT_RE = re.compile(r'^[-+]?(\d{1,3}(\.\d{3})+|\d+)(,\d+)?$')


def parse_cell(raw, kind):
    """
    Convert one raw table cell into the scalar declared for its column.

    Empty numeric and date cells come back as None (absent), never as 0.

    Raises:
        ParseError when the text does not fit ``kind``.
    """
    if kind not in SCALAR_TYPES:
        raise ValueError(f'Unknown scalar type: {kind}')

    text = (raw or '').strip()

    if kind == STRING:
        return text

    if kind == BOOLEAN:
        token = text.lower()
        if token in TRUE_TOKENS:
            return True
        if token in FALSE_TOKENS:
            return False
        raise ParseError(raw, kind)

    if text == '':
        return None

    if kind == INT:
        if not _INT_RE.match(text):
            raise ParseError(raw, kind)
        return int(text.replace('.', ''))

    if kind == FLOAT:
        if not _FLOAT_RE.match(text):
            raise ParseError(raw, kind)
        return float(text)

    if kind == FLOAT_POINT:
        if not _FLOAT_POINT_RE.match(text):
            raise ParseError(raw, kind)
        return float(text.replace('.', '').replace(',', '.'))

    try:
        return datetime.strptime(text, DATE_FORMAT).date()
    except ValueError:
        raise ParseError(raw, kind)


def format_float_point(value, decimals=2):
    """Render a number the way the site prints it: 1234.56 -> '1.234,56'."""
    rendered = f'{value:,.{decimals}f}'
    return rendered.replace(',', '_').replace('.', ',').replace('_', '.')


def format_date(value):
    return value.strftime(DATE_FORMAT)


def parse_date(text):
    """Parse a dd/mm/yyyy string, returning None for blank input."""
    return parse_cell(text, DATE)
