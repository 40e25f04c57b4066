"""
Per-page configuration for the CEI (B3 investor portal) data domains.

Every page shares the same WebForms filter form; what changes is the URL,
which dependent dropdown exists, which tables come back and how the page
signals that the results have finished rendering.
"""

from collections import namedtuple

from cell_parser import STRING, INT, FLOAT, FLOAT_POINT, DATE, BOOLEAN
from delta_response import CompletionRule
from table_extractor import TableSchema

BASE_URL = 'https://ceiapp.b3.com.br/CEI_Responsivo'

SCRIPT_MANAGER = 'ctl00$ContentPlaceHolder1$ToolkitScriptManager1'
SCRIPT_MANAGER_HIDDEN = 'ctl00_ContentPlaceHolder1_ToolkitScriptManager1_HiddenField'
INSTITUTION_FIELD = 'ctl00$ContentPlaceHolder1$ddlAgentes'
ACCOUNT_FIELD = 'ctl00$ContentPlaceHolder1$ddlContas'
DATE_FIELD = 'ctl00$ContentPlaceHolder1$txtData'
SUBMIT_FIELD = 'ctl00$ContentPlaceHolder1$btnConsultar'
FILTER_PANEL = 'ctl00$ContentPlaceHolder1$updFiltro'

SELECT_INSTITUTION_OPTIONS = '#ctl00_ContentPlaceHolder1_ddlAgentes option'
SELECT_ACCOUNT_OPTIONS = '#ctl00_ContentPlaceHolder1_ddlContas option'
SELECT_PRODUCT_OPTIONS = '#ctl00_ContentPlaceHolder1_ddlProduto option'
DATE_MIN_VALUE = '#ctl00_ContentPlaceHolder1_lblPeriodoInicial'
DATE_MAX_VALUE = '#ctl00_ContentPlaceHolder1_lblPeriodoFinal'

STATE_FIELDS = (
    '__EVENTTARGET',
    '__EVENTARGUMENT',
    '__LASTFOCUS',
    '__VIEWSTATE',
    '__VIEWSTATEGENERATOR',
    '__EVENTVALIDATION',
)

# Field order matches what the browser's AJAX runtime sends
INSTITUTION_FORM = (
    SCRIPT_MANAGER,
    SCRIPT_MANAGER_HIDDEN,
    *STATE_FIELDS,
    INSTITUTION_FIELD,
    ACCOUNT_FIELD,
    DATE_FIELD,
    '__ASYNCPOST',
)

SEARCH_FORM = (
    SCRIPT_MANAGER,
    SCRIPT_MANAGER_HIDDEN,
    INSTITUTION_FIELD,
    ACCOUNT_FIELD,
    DATE_FIELD,
    *STATE_FIELDS,
    '__ASYNCPOST',
    SUBMIT_FIELD,
)

INSTITUTION_OVERRIDES = {
    SCRIPT_MANAGER: f'{FILTER_PANEL}|{INSTITUTION_FIELD}',
    '__EVENTTARGET': INSTITUTION_FIELD,
    '__EVENTARGUMENT': '',
    '__LASTFOCUS': '',
    '__ASYNCPOST': 'true',
}

SEARCH_OVERRIDES = {
    SCRIPT_MANAGER: f'{FILTER_PANEL}|{SUBMIT_FIELD}',
    '__EVENTTARGET': '',
    '__EVENTARGUMENT': '',
    '__LASTFOCUS': '',
    '__ASYNCPOST': 'true',
}


class Domain(namedtuple('Domain', [
        'name', 'url', 'tables', 'completion',
        'account_options', 'product_options', 'select_institution', 'account_label'])):
    """
    name: key used by callers ("wallet", "loans", ...).
    url: the .aspx page.
    tables: ``{result_key: TableSchema}``.
    completion: CompletionRule for the search postback.
    account_options: dependent dropdown iterated per institution, or None.
    product_options: dependent dropdown only listed by ``get_options``.
    select_institution: whether picking an institution is posted back
        before searching (the page repopulates dependent controls).
    account_label: element holding "Conta nº 1234-5" when the account is
        only known from the result.
    """
    __slots__ = ()

    def __new__(cls, name, url, tables, completion, account_options=None, product_options=None,
                select_institution=True, account_label=None):
        return super().__new__(cls, name, url, tables, completion, account_options, product_options,
                               select_institution, account_label)

    @property
    def form_fields(self):
        return tuple(dict.fromkeys(INSTITUTION_FORM + SEARCH_FORM))


_WALLET_GRID = '#ctl00_ContentPlaceHolder1_rptAgenteContaMercado_ctl00_rptContaMercado_ctl00'

WALLET = Domain(
    name='wallet',
    url='https://cei.b3.com.br/CEI_Responsivo/ConsultarCarteiraAtivos.aspx',
    tables={
        'stockWallet': TableSchema(
            f'{_WALLET_GRID}_rprCarteira_ctl00_grdCarteira tbody tr',
            [
                ('company', STRING),
                ('stockType', STRING),
                ('code', STRING),
                ('isin', STRING),
                ('price', FLOAT),
                ('quantity', INT),
                ('quotationFactor', FLOAT),
                ('totalValue', FLOAT),
            ],
        ),
        'nationalTreasuryWallet': TableSchema(
            f'{_WALLET_GRID}_trBodyTesouroDireto tbody tr',
            [
                ('code', STRING),
                ('expirationDate', DATE),
                ('investedValue', FLOAT),
                ('grossValue', FLOAT),
                ('netValue', FLOAT),
                ('quantity', FLOAT),
                ('blocked', FLOAT),
            ],
        ),
    },
    completion=CompletionRule(
        footer_selector='#ctl00_ContentPlaceHolder1_rptAgenteContaMercado_ctl00_rptContaMercado_ctl01_divTotalCarteira',
        retry_without_footer=False,
    ),
    account_options=SELECT_ACCOUNT_OPTIONS,
)

_LOANS_TABLE = '#ctl00_ContentPlaceHolder1_rptAgente_ctl00_rptContas_ctl00_Nova'

LOANS = Domain(
    name='loans',
    url=f'{BASE_URL}/ConsultarBTC.aspx',
    tables={
        'loans': TableSchema(
            f'{_LOANS_TABLE} tbody tr',
            [
                ('code', STRING),
                ('isin', STRING),
                ('quantity', INT),
                ('nature', STRING),
                ('taxTaker', FLOAT_POINT),
                ('taxDonor', FLOAT_POINT),
                ('commissionTaker', FLOAT_POINT),
                ('commissionDonor', FLOAT_POINT),
                ('registerDate', DATE),
                ('dueDate', DATE),
                ('allowEarlySettlement', BOOLEAN),
                ('referencePrice', FLOAT),
                ('financialVolume', FLOAT),
                ('contractNumber', STRING),
                ('modality', STRING),
            ],
        ),
    },
    completion=CompletionRule(footer_selector=f'{_LOANS_TABLE} tfoot'),
    account_options=SELECT_ACCOUNT_OPTIONS,
)

WARRANTIES = Domain(
    name='warranties',
    url=f'{BASE_URL}/garantiasNGA.aspx',
    tables={
        'warranties': TableSchema(
            '#tblOfertasPublicas tbody tr',
            [
                ('type', STRING),
                ('code', STRING),
                ('quantity', FLOAT),
                ('unitPrice', FLOAT),
                ('warrantyValue', FLOAT),
            ],
        ),
    },
    completion=CompletionRule(footer_selector='#tblOfertasPublicas tfoot'),
    account_label='#ctl00_ContentPlaceHolder1_repContasVista_ctl00_lblConta',
)

CETIP_STOCKS = Domain(
    name='cetip_stocks',
    url=f'{BASE_URL}/ConsultarCertifica.aspx?prdt=Consolidado&inst=0',
    tables={
        'cetipStocks': TableSchema(
            '.responsive tbody tr',
            [
                ('onDate', DATE),
                ('instrument', STRING),
                ('code', STRING),
                ('type', STRING),
                ('issuer', STRING),
                ('indexer', STRING),
                ('issueDate', DATE),
                ('dueDate', DATE),
                ('quantityAvail', INT),
                ('quantityUnavail', INT),
                ('burdensQuantityReceived', INT),
                ('burdensQuantityProvided', INT),
                ('counterpart', STRING),
                ('observation', STRING),
                ('borderQuantityProvided', INT),
            ],
        ),
    },
    completion=CompletionRule(footer_selector='.responsive tfoot'),
    product_options=SELECT_PRODUCT_OPTIONS,
    select_institution=False,
)

CETIP_FURNITURES = Domain(
    name='cetip_furnitures',
    url=f'{BASE_URL}/ConsultarValoresMobiliariosPorProduto.aspx?prdt=Consolidado&inst=0',
    tables={
        'cetipFurnitures': TableSchema(
            '.responsive tbody tr',
            [
                ('onDate', DATE),
                ('instrument', STRING),
                ('code', STRING),
                ('issuer', STRING),
                ('issueDate', DATE),
                ('dueDate', DATE),
                ('quantityAvail', INT),
                ('quantityUnavail', INT),
                ('quantityReserve', INT),
                ('quantityBlocked', INT),
                ('warrantyQuantityReceived', INT),
                ('warrantyQuantityProvided', INT),
                ('warrantyObservation', STRING),
                ('burdensQuantityReceived', INT),
                ('burdensQuantityProvided', INT),
                ('burdensCounterpart', STRING),
                ('burdensObservation', STRING),
            ],
        ),
    },
    completion=CompletionRule(footer_selector='.responsive tfoot'),
    product_options=SELECT_PRODUCT_OPTIONS,
    select_institution=False,
)

DOMAINS = {d.name: d for d in (WALLET, LOANS, WARRANTIES, CETIP_STOCKS, CETIP_FURNITURES)}


def get_domain(name):
    try:
        return DOMAINS[name]
    except KeyError:
        raise KeyError(f'Unknown domain: {name} (expected one of {sorted(DOMAINS)})')
