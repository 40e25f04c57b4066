"""End-to-end tests for ExtractionSession against canned CEI replies."""

from datetime import date

import pytest

from cei_fixtures import (
    POSITIONS, POSITIONS_BY_ACCOUNT, FakeTransport, landing_page, pending_reply, data_reply, error_reply,
    accounts_reply, delta, panel, state_chunks, result_table,
)
from crawler_errors import ProtocolError, SubmitError
from domains import INSTITUTION_FIELD, ACCOUNT_FIELD, DATE_FIELD, SCRIPT_MANAGER, WARRANTIES
from extraction_session import ExtractionSession, get_options, get_records, account_from_label


def test_select_submit_and_extract_typed_rows():
    transport = FakeTransport(landing_page(), [data_reply(1, [['AAAA11', 'ISIN123', '100']])])

    records = get_records(transport, POSITIONS, date='15/03/2023')

    assert records == [{
        'institution': 'Bank A',
        'positions': [{'code': 'AAAA11', 'isin': 'ISIN123', 'quantity': 100}],
    }]
    body = transport.posts[0]
    assert body[INSTITUTION_FIELD] == '1'
    assert body[DATE_FIELD] == '15/03/2023'
    assert body[SCRIPT_MANAGER] == 'ctl00$ContentPlaceHolder1$updFiltro|ctl00$ContentPlaceHolder1$btnConsultar'
    assert body['__VIEWSTATE'] == 'vs-0'
    assert body['__ASYNCPOST'] == 'true'


def test_placeholder_institution_is_skipped():
    page = landing_page(institutions=[('1', 'Bank A'), ('2', 'Bank B')])
    transport = FakeTransport(page, [data_reply(1, []), data_reply(2, [])])

    records = get_records(transport, POSITIONS)

    assert [r['institution'] for r in records] == ['Bank A', 'Bank B']
    assert [b[INSTITUTION_FIELD] for b in transport.posts] == ['1', '2']
    # the second institution continues from the tokens pushed by the first search
    assert transport.posts[1]['__VIEWSTATE'] == 'vs-1'


class TestDates:

    def test_cap_dates_clamps_to_page_minimum(self):
        transport = FakeTransport(landing_page(min_date='01/01/2010', max_date='31/12/2023'), [data_reply(1, [])])

        get_records(transport, POSITIONS, cap_dates=True, date='01/01/1900')

        assert transport.posts[0][DATE_FIELD] == '01/01/2010'

    def test_cap_dates_clamps_to_page_maximum(self):
        transport = FakeTransport(landing_page(max_date='31/12/2023'), [data_reply(1, [])])

        get_records(transport, POSITIONS, cap_dates=True, date=date(2030, 6, 1))

        assert transport.posts[0][DATE_FIELD] == '31/12/2023'

    def test_without_cap_the_date_is_sent_as_given(self):
        transport = FakeTransport(landing_page(), [data_reply(1, [])])

        get_records(transport, POSITIONS, date='01/01/1900')

        assert transport.posts[0][DATE_FIELD] == '01/01/1900'

    def test_blank_date_keeps_page_default(self):
        transport = FakeTransport(landing_page(date='29/12/2023'), [data_reply(1, [])])

        get_records(transport, POSITIONS, cap_dates=True, date='  ')

        assert transport.posts[0][DATE_FIELD] == '29/12/2023'

    def test_no_date_keeps_page_default(self):
        transport = FakeTransport(landing_page(date='29/12/2023'), [data_reply(1, [])])

        get_records(transport, POSITIONS)

        assert transport.posts[0][DATE_FIELD] == '29/12/2023'


class TestConvergence:

    def test_three_pending_then_error_raises_submit_error_after_four_submits(self):
        replies = [pending_reply(1), pending_reply(2), pending_reply(3), error_reply(4, 'Data inválida.')]
        transport = FakeTransport(landing_page(), replies)

        with pytest.raises(SubmitError) as exc:
            get_records(transport, POSITIONS, date='15/03/2023')

        assert exc.value.message == 'Data inválida.'
        assert len(transport.posts) == 4

    def test_pending_resubmits_with_merged_tokens(self):
        transport = FakeTransport(landing_page(), [pending_reply(1), data_reply(2, [['X', 'Y', '1']])])

        records = get_records(transport, POSITIONS)

        assert [b['__VIEWSTATE'] for b in transport.posts] == ['vs-0', 'vs-1']
        assert records[0]['positions'] == [{'code': 'X', 'isin': 'Y', 'quantity': 1}]

    def test_landing_page_without_state_fields(self):
        transport = FakeTransport(landing_page(viewstate='', validation=''))

        with pytest.raises(ProtocolError):
            get_records(transport, POSITIONS)
        assert transport.posts == []


class TestAccounts:

    def test_institution_then_each_account(self):
        replies = [
            accounts_reply(1, ['111', '222']),
            data_reply(2, [['A', 'B', '1']]),
            data_reply(3, [['C', 'D', '2']]),
        ]
        transport = FakeTransport(landing_page(), replies)

        records = get_records(transport, POSITIONS_BY_ACCOUNT, trace=True)

        assert [(r['institution'], r['account']) for r in records] == [('Bank A', '111'), ('Bank A', '222')]
        assert records[1]['positions'] == [{'code': 'C', 'isin': 'D', 'quantity': 2}]

        select_body, first_search, second_search = transport.posts
        assert select_body['__EVENTTARGET'] == INSTITUTION_FIELD
        assert select_body[SCRIPT_MANAGER].endswith('|' + INSTITUTION_FIELD)
        assert first_search['__EVENTTARGET'] == ''
        assert first_search['__VIEWSTATE'] == 'vs-1'
        assert first_search[ACCOUNT_FIELD] == '111'
        assert second_search['__VIEWSTATE'] == 'vs-2'
        assert second_search[ACCOUNT_FIELD] == '222'

    def test_rejected_institution_selection(self):
        transport = FakeTransport(landing_page(), [error_reply(1, 'Instituição indisponível.')])

        with pytest.raises(SubmitError) as exc:
            get_records(transport, POSITIONS_BY_ACCOUNT)
        assert exc.value.message == 'Instituição indisponível.'

    def test_rejected_institution_while_listing_options(self):
        transport = FakeTransport(landing_page(), [error_reply(1, 'Instituição indisponível.')])

        with pytest.raises(SubmitError) as exc:
            get_options(transport, POSITIONS_BY_ACCOUNT)
        assert exc.value.message == 'Instituição indisponível.'

    def test_options_list_accounts_per_institution(self):
        page = landing_page(institutions=[('1', 'Bank A'), ('2', 'Bank B')])
        transport = FakeTransport(page, [accounts_reply(1, ['111']), accounts_reply(2, ['333', '444'])])

        options = get_options(transport, POSITIONS_BY_ACCOUNT)

        assert options == {
            'institutions': [
                {'value': '1', 'label': 'Bank A', 'accounts': ['111']},
                {'value': '2', 'label': 'Bank B', 'accounts': ['333', '444']},
            ],
            'minDate': '01/01/2010',
            'maxDate': '31/12/2023',
        }
        # every listing starts from the landing page tokens
        assert [b['__VIEWSTATE'] for b in transport.posts] == ['vs-0', 'vs-0']


def test_options_without_dependent_dropdown_do_not_post():
    transport = FakeTransport(landing_page())

    options = get_options(transport, POSITIONS)

    assert options['institutions'] == [{'value': '1', 'label': 'Bank A'}]
    assert transport.posts == []


def test_warranties_account_comes_from_result_label():
    label = '<span id="ctl00_ContentPlaceHolder1_repContasVista_ctl00_lblConta">Conta nº 1234-5</span>'
    search = delta(panel(label + result_table([['Ações', 'PETR4', '10.0', '25.5', '255.0']], table_id='tblOfertasPublicas')),
                   *state_chunks(2))
    transport = FakeTransport(landing_page(), [delta(panel('<div></div>'), *state_chunks(1)), search])

    records = ExtractionSession(transport, WARRANTIES).get_records()

    assert records == [{
        'institution': 'Bank A',
        'account': '1234',
        'warranties': [{'type': 'Ações', 'code': 'PETR4', 'quantity': 10.0, 'unitPrice': 25.5, 'warrantyValue': 255.0}],
    }]


def test_account_from_label():
    assert account_from_label(' Conta nº 98765-0 ') == '98765'
