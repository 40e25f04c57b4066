"""
Error taxonomy shared by every CEI crawler module.

Callers can branch on ``err.type`` (a ``CeiErrorTypes`` member) or on the
exception class; both carry the same information.
"""

from enum import Enum


class CeiErrorTypes(Enum):
    PARSE_ERROR = 'parse_error'
    PROTOCOL_ERROR = 'protocol_error'
    SUBMIT_ERROR = 'submit_error'
    EXHAUSTED = 'exhausted'
    CANCELLED = 'cancelled'
    SESSION_EXPIRED = 'session_expired'


class CeiCrawlerError(Exception):
    type = None

    def __init__(self, message=''):
        super().__init__(message)
        self.message = message


class ParseError(CeiCrawlerError):
    """A single table cell did not match its declared type."""
    type = CeiErrorTypes.PARSE_ERROR

    def __init__(self, raw, kind):
        super().__init__(f'Cannot parse {raw!r} as {kind}')
        self.raw = raw
        self.kind = kind


class ProtocolError(CeiCrawlerError):
    """The server reply could not be understood. Never retried."""
    type = CeiErrorTypes.PROTOCOL_ERROR


class SubmitError(CeiCrawlerError):
    """The remote application rejected the action; message is kept verbatim."""
    type = CeiErrorTypes.SUBMIT_ERROR


class ExhaustedError(CeiCrawlerError):
    type = CeiErrorTypes.EXHAUSTED

    def __init__(self, cycles):
        super().__init__(f'Postback did not converge after {cycles} cycles')
        self.cycles = cycles


class CancellationError(CeiCrawlerError):
    type = CeiErrorTypes.CANCELLED


class SessionExpiredError(CeiCrawlerError):
    type = CeiErrorTypes.SESSION_EXPIRED
