"""
Orchestration of one extraction run against a CEI page.

The session owns the single "current state" slot for its page: every
selection, search and server update produces a new field set that replaces
the previous one. Postbacks are strictly sequential; run independent
sessions (each with its own transport) for parallel work.
"""

from datetime import date as date_type, datetime

from bs4 import BeautifulSoup

from cell_parser import parse_date, format_date
from crawler_errors import ParseError, ProtocolError, SubmitError
from delta_response import parse_response
from domains import (
    get_domain, INSTITUTION_FIELD, ACCOUNT_FIELD, DATE_FIELD, INSTITUTION_FORM, SEARCH_FORM,
    INSTITUTION_OVERRIDES, SEARCH_OVERRIDES, SELECT_INSTITUTION_OPTIONS, DATE_MIN_VALUE, DATE_MAX_VALUE,
)
from form_state import load_fields, apply_overrides, merge, build_form_data
from postback import PostbackEngine, MAX_CYCLES
from table_extractor import extract_table

REQUIRED_STATE_FIELDS = ('__VIEWSTATE', '__EVENTVALIDATION')


def log(msg):
    print(f'[{datetime.now()}] [session] {msg}', flush=True)


def _is_selectable(value):
    # the placeholder option is "0" or blank
    value = (value or '').strip()
    return value.isdigit() and int(value) > 0


def list_options(soup, selector):
    """Selectable (value, label) options of a dropdown, placeholder removed."""
    options = []
    for option in soup.select(selector):
        value = option.get('value', '')
        if _is_selectable(value):
            options.append({'value': value.strip(), 'label': option.get_text(strip=True)})
    return options


def account_from_label(text):
    """'Conta nº 1234-5' -> '1234'"""
    return text.replace('Conta nº', '').strip().split('-')[0].strip()


class ExtractionSession:
    """
    Args:
        transport: object with ``get(url) -> text`` and
            ``post(url, form_data, referer=None) -> text``; an optional
            ``cancel_event`` attribute is honoured between cycles.
        domain: a Domain or its name.
        cap_dates: clamp the requested date into the page's advertised range.
        trace: log selection progress.
    """

    def __init__(self, transport, domain, cap_dates=False, trace=False, max_cycles=MAX_CYCLES):
        self.transport = transport
        self.domain = get_domain(domain) if isinstance(domain, str) else domain
        self.cap_dates = cap_dates
        self.trace = trace
        self.max_cycles = max_cycles
        self.state = None
        self.engine = PostbackEngine(self._post, max_cycles=max_cycles,
                                     cancel_event=getattr(transport, 'cancel_event', None))

    def _trace(self, msg):
        if self.trace:
            log(msg)

    def _post(self, form_data):
        return self.transport.post(self.domain.url, form_data, referer=self.domain.url)

    def load_page(self):
        """GET the landing page and reset the current state from it."""
        html = self.transport.get(self.domain.url)
        soup = BeautifulSoup(html, 'html.parser')
        state = load_fields(soup, self.domain.form_fields)
        missing = [name for name in REQUIRED_STATE_FIELDS if not state.get(name)]
        if missing:
            raise ProtocolError(f'Landing page {self.domain.url} has no {", ".join(missing)}')
        self.state = state
        return soup

    @staticmethod
    def date_bounds(soup):
        """(min, max) dates advertised by the page labels; None where missing."""
        bounds = []
        for selector in (DATE_MIN_VALUE, DATE_MAX_VALUE):
            el = soup.select_one(selector)
            if el is None:
                bounds.append(None)
                continue
            text = el.get_text(strip=True)
            try:
                bounds.append(parse_date(text))
            except ParseError:
                raise ProtocolError(f'Unparseable date bound {text!r}')
        return tuple(bounds)

    def effective_date(self, soup, target):
        """Return the dd/mm/yyyy string to submit for ``target``."""
        if not isinstance(target, date_type):
            target = parse_date(target)
        if self.cap_dates:
            min_date, max_date = self.date_bounds(soup)
            if min_date and target < min_date:
                log(f'Date {format_date(target)} before {format_date(min_date)}, capping')
                target = min_date
            if max_date and target > max_date:
                log(f'Date {format_date(target)} after {format_date(max_date)}, capping')
                target = max_date
        return format_date(target)

    def select_institution(self, value, state=None):
        """
        Select an institution in ``state`` (default: the current state).

        When the page posts the selection back, the reply is parsed, its
        updates merged, and the ParsedResponse returned so dependent
        dropdowns can be read from it. Otherwise returns None.
        """
        state = apply_overrides(self.state if state is None else state, {INSTITUTION_FIELD: value})
        if not self.domain.select_institution:
            self.state = state
            return None

        form_data = build_form_data(state, INSTITUTION_FORM, INSTITUTION_OVERRIDES)
        response = parse_response(self._post(form_data), self.domain.completion)
        self.state = merge(state, response.updates)
        if response.outcome.is_error:
            raise SubmitError(response.outcome.message)
        return response

    def search(self):
        """
        Submit the search and converge; return ``{table_key: [records]}``.

        Raises:
            SubmitError with the page's message when the search is rejected.
        """
        result = self.engine.run(
            self.state,
            lambda state, overrides: build_form_data(state, SEARCH_FORM, overrides),
            SEARCH_OVERRIDES,
            self.domain.completion,
        )
        self.state = result.state
        if result.outcome.is_error:
            raise SubmitError(result.outcome.message)

        self._trace(f'Processing {self.domain.name} data')
        soup = result.response.soup
        tables = {key: extract_table(soup, schema) for key, schema in self.domain.tables.items()}
        if self.domain.account_label:
            label = soup.select_one(self.domain.account_label)
            tables['account'] = account_from_label(label.get_text()) if label else None
        return tables

    def get_options(self):
        """
        Returns:
            {'institutions': [{'value', 'label', 'accounts'|'products'?}],
             'minDate': 'dd/mm/yyyy', 'maxDate': 'dd/mm/yyyy'}
        """
        soup = self.load_page()
        landing = self.state
        min_el, max_el = soup.select_one(DATE_MIN_VALUE), soup.select_one(DATE_MAX_VALUE)

        institutions = list_options(soup, SELECT_INSTITUTION_OPTIONS)
        log(f'Found {len(institutions)} institutions')

        dependent = [('accounts', self.domain.account_options), ('products', self.domain.product_options)]
        dependent = [(key, selector) for key, selector in dependent if selector]
        if dependent:
            for institution in institutions:
                # each listing starts again from the landing page state
                state = apply_overrides(landing, {INSTITUTION_FIELD: institution['value']})
                form_data = build_form_data(state, INSTITUTION_FORM, INSTITUTION_OVERRIDES)
                response = parse_response(self._post(form_data), self.domain.completion)
                if response.outcome.is_error:
                    raise SubmitError(response.outcome.message)
                for key, selector in dependent:
                    institution[key] = [o['value'] for o in list_options(response.soup, selector)]
                self._trace(f'Institution {institution["label"]}: '
                            + ', '.join(f'{len(institution[key])} {key}' for key, _ in dependent))

        return {
            'institutions': institutions,
            'minDate': min_el.get_text(strip=True) if min_el else None,
            'maxDate': max_el.get_text(strip=True) if max_el else None,
        }

    def get_records(self, date=None):
        """
        Select every institution (and account) in turn and collect typed rows.

        Returns:
            [{'institution': label, 'account'?: value, <table_key>: [records]}]
        """
        soup = self.load_page()
        if isinstance(date, str) and not date.strip():
            date = None
        if date is not None:
            effective = self.effective_date(soup, date)
            log(f'Using date {effective}')
            self.state = apply_overrides(self.state, {DATE_FIELD: effective})

        result = []
        for institution in list_options(soup, SELECT_INSTITUTION_OPTIONS):
            self._trace(f'Selecting institution {institution["label"]} ({institution["value"]})')
            response = self.select_institution(institution['value'])

            if not self.domain.account_options:
                result.append({'institution': institution['label'], **self.search()})
                continue

            source = response.soup if response is not None else soup
            for account in list_options(source, self.domain.account_options):
                self._trace(f'Selecting account {account["value"]}')
                self.state = apply_overrides(self.state, {ACCOUNT_FIELD: account['value']})
                result.append({
                    'institution': institution['label'],
                    'account': account['value'],
                    **self.search(),
                })

        log(f'{self.domain.name}: {len(result)} result groups, {self.engine.submits} search submits')
        return result


def get_options(transport, domain, trace=False):
    return ExtractionSession(transport, domain, trace=trace).get_options()


def get_records(transport, domain, cap_dates=False, trace=False, date=None, max_cycles=MAX_CYCLES):
    session = ExtractionSession(transport, domain, cap_dates=cap_dates, trace=trace, max_cycles=max_cycles)
    return session.get_records(date)
