from collections import namedtuple
from datetime import datetime

from cell_parser import parse_cell, SCALAR_TYPES
from crawler_errors import ParseError


def log(msg):
    print(f'[{datetime.now()}] [table] {msg}', flush=True)


class TableSchema(namedtuple('TableSchema', ['row_selector', 'columns', 'version'])):
    """
    Positional description of one result table.

    ``columns`` is a tuple of (field_name, scalar_type) pairs in the physical
    left-to-right order of the table cells. Bump ``version`` whenever the
    remote page changes its column order.
    """
    __slots__ = ()

    def __new__(cls, row_selector, columns, version=1):
        columns = tuple((name, kind) for name, kind in columns)
        for name, kind in columns:
            if kind not in SCALAR_TYPES:
                raise ValueError(f'Column {name} has unknown type {kind}')
        return super().__new__(cls, row_selector, columns, version)

    @property
    def field_names(self):
        return [name for name, _ in self.columns]


def _cell_text(cell):
    return ' '.join(cell.get_text().split())


def extract_rows(soup, row_selector):
    """Return the collapsed text of every cell, one list per matching row."""
    rows = []
    for tr in soup.select(row_selector):
        cells = tr.find_all('td')
        if not cells:
            continue
        rows.append([_cell_text(td) for td in cells])
    return rows


def build_record(cells, columns):
    """Zip cells onto columns. Missing trailing cells are None, extra cells are ignored."""
    record = {}
    for idx, (name, kind) in enumerate(columns):
        if idx < len(cells):
            record[name] = parse_cell(cells[idx], kind)
        else:
            record[name] = None
    return record


def extract_table(soup, schema):
    """
    Map every row selected by ``schema.row_selector`` into a typed record.

    A row holding a cell that does not parse is logged and dropped; the rest
    of the table is still returned. No rows means an empty list.
    """
    records = []
    for row_num, cells in enumerate(extract_rows(soup, schema.row_selector)):
        try:
            records.append(build_record(cells, schema.columns))
        except ParseError as e:
            log(f'Dropping row {row_num}: {e.message} (cells={cells})')
    log(f'Extracted {len(records)} records from {schema.row_selector}')
    return records
