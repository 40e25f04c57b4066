"""
Parsing and classification of ASP.NET AJAX partial-render ("delta") replies.

A delta reply is a run of ``length|type|id|content|`` chunks. ``hiddenField``
chunks carry fresh state (ViewState, EventValidation, ...) that must be
merged back before the next postback; ``updatePanel`` chunks carry the
re-rendered HTML that is classified into a PostbackOutcome.
"""

from collections import namedtuple
from datetime import datetime
from enum import Enum

from bs4 import BeautifulSoup

from crawler_errors import ProtocolError, SessionExpiredError

ERROR_ALERT_CLASS = 'alert'
SUCCESS_ALERT_CLASS = 'success'
ALERT_BOX_SELECTOR = '.alert-box'


def log(msg):
    print(f'[{datetime.now()}] [delta] {msg}', flush=True)


class OutcomeKind(Enum):
    DATA_READY = 'data_ready'
    EMPTY_NO_ERROR = 'empty_no_error'
    ERROR = 'error'
    PENDING = 'pending'


class PostbackOutcome(namedtuple('PostbackOutcome', ['kind', 'message'])):
    __slots__ = ()

    @classmethod
    def data_ready(cls, message=None):
        return cls(OutcomeKind.DATA_READY, message)

    @classmethod
    def empty(cls, message=None):
        return cls(OutcomeKind.EMPTY_NO_ERROR, message)

    @classmethod
    def error(cls, message):
        return cls(OutcomeKind.ERROR, message)

    @classmethod
    def pending(cls):
        return cls(OutcomeKind.PENDING, None)

    @property
    def terminal(self):
        return self.kind is not OutcomeKind.PENDING

    @property
    def is_error(self):
        return self.kind is OutcomeKind.ERROR


class CompletionRule(namedtuple('CompletionRule', ['footer_selector', 'retry_without_footer', 'require_success_alert'])):
    """
    How one data domain recognises that its results have rendered.

    footer_selector: element that only exists once the results table is
        complete (usually a ``tfoot``); None when the domain has no footer.
    retry_without_footer: when False, any reply without an error is final.
    require_success_alert: DataReady additionally needs a success alert.
    """
    __slots__ = ()

    def __new__(cls, footer_selector=None, retry_without_footer=True, require_success_alert=False):
        return super().__new__(cls, footer_selector, retry_without_footer, require_success_alert)


ParsedResponse = namedtuple('ParsedResponse', ['outcome', 'updates', 'parts', 'soup'])


def parse_delta(text):
    """
    Split a delta reply into ``{'type', 'id', 'content'}`` parts.

    Raises:
        ProtocolError if the text is not a well-formed delta payload.
    """
    if not text or not text.strip():
        raise ProtocolError('Empty postback response')

    parts = []
    pos = 0
    while pos < len(text):
        if not text[pos:].strip():
            break

        pipe1 = text.find('|', pos)
        length_str = text[pos:pipe1] if pipe1 != -1 else ''
        if not length_str.isdigit():
            raise ProtocolError(f'Unrecognized response shape near offset {pos}: {text[pos:pos + 80]!r}')
        length = int(length_str)
        pos = pipe1 + 1

        pipe2 = text.find('|', pos)
        if pipe2 == -1:
            raise ProtocolError(f'Truncated chunk header at offset {pos}')
        part_type = text[pos:pipe2]
        pos = pipe2 + 1

        pipe3 = text.find('|', pos)
        if pipe3 == -1:
            raise ProtocolError(f'Truncated chunk header at offset {pos}')
        part_id = text[pos:pipe3]
        pos = pipe3 + 1

        content = text[pos:pos + length]
        if len(content) != length or text[pos + length:pos + length + 1] != '|':
            raise ProtocolError(f'Chunk {part_type}/{part_id} declares {length} chars but is truncated')
        pos = pos + length + 1

        parts.append({'type': part_type, 'id': part_id, 'content': content})

    log(f'Parsed {len(parts)} delta parts:')
    for p in parts:
        log(f'  type={p["type"]} id={p["id"]} content_length={len(p["content"])}')
    return parts


def extract_updates(parts):
    """Field updates pushed by the server, keyed by field name."""
    updates = {}
    for part in parts:
        if part['type'] == 'hiddenField':
            updates[part['id']] = part['content']
    return updates


def rendered_html(parts):
    return ''.join(part['content'] for part in parts if part['type'] == 'updatePanel')


def alert_text(alert):
    """Visible alert text without the close button glyph."""
    for close in alert.select('a.close'):
        close.extract()
    return ' '.join(alert.get_text(' ').split())


def find_alerts(soup):
    """Return (error_messages, notice_messages) from every non-empty alert box."""
    errors, notices = [], []
    for alert in soup.select(ALERT_BOX_SELECTOR):
        classes = alert.get('class', [])
        text = alert_text(alert)
        if not text:
            continue
        if ERROR_ALERT_CLASS in classes:
            errors.append(text)
        else:
            notices.append(text)
    return errors, notices


def classify(soup, rule):
    errors, notices = find_alerts(soup)
    if errors:
        return PostbackOutcome.error(errors[0])

    has_footer = bool(rule.footer_selector) and soup.select_one(rule.footer_selector) is not None
    has_success = any(alert_text(a) for a in soup.select(f'{ALERT_BOX_SELECTOR}.{SUCCESS_ALERT_CLASS}'))
    if has_footer and (has_success or not rule.require_success_alert):
        return PostbackOutcome.data_ready(notices[0] if notices else None)

    if notices:
        return PostbackOutcome.empty(notices[0])

    if not rule.retry_without_footer:
        return PostbackOutcome.data_ready()

    return PostbackOutcome.pending()


def parse_response(text, rule):
    """
    Parse one postback reply into a ParsedResponse.

    Field updates are returned whatever the outcome: Error and Pending replies
    still carry the tokens the next attempt needs.

    Raises:
        ProtocolError for malformed payloads or a server-side error chunk.
        SessionExpiredError when the server redirects the async request.
    """
    parts = parse_delta(text)

    for part in parts:
        if part['type'] == 'pageRedirect':
            log(f'pageRedirect to {part["content"]}')
            raise SessionExpiredError('Session expired (server redirected)')
        if part['type'] == 'error':
            raise ProtocolError(f'Server error {part["id"]}: {part["content"]}')

    updates = extract_updates(parts)
    soup = BeautifulSoup(rendered_html(parts), 'html.parser')
    outcome = classify(soup, rule)
    log(f'Outcome: {outcome.kind.value}' + (f' ({outcome.message})' if outcome.message else '')
        + f', {len(updates)} field updates')
    return ParsedResponse(outcome, updates, parts, soup)
