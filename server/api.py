import os
from datetime import date

from flask import Flask, jsonify, request

from cell_parser import parse_date
from crawler_errors import (
    CancellationError, ExhaustedError, ParseError, ProtocolError, SessionExpiredError, SubmitError,
)
from domains import DOMAINS
from extraction_session import get_options, get_records
from scraper import CookieTransport

app = Flask(__name__)

ERROR_STATUS = (
    (SessionExpiredError, 401),
    (SubmitError, 422),
    (CancellationError, 499),
    (ProtocolError, 502),
    (ExhaustedError, 504),
)


def make_transport():
    return CookieTransport()


def _flag(name):
    return request.args.get(name, '').lower() in ('1', 'true', 'yes')


def _to_json(value):
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _to_json(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_to_json(v) for v in value]
    return value


def _error_response(e):
    for error_cls, status in ERROR_STATUS:
        if isinstance(e, error_cls):
            return jsonify({'error': e.type.value, 'message': e.message}), status
    raise e


@app.route('/api/<domain>/options', methods=['GET'])
def options(domain):
    if domain not in DOMAINS:
        return jsonify({'error': 'unknown_domain', 'message': f'Unknown domain: {domain}'}), 404

    try:
        result = get_options(make_transport(), domain, trace=_flag('trace'))
    except (SessionExpiredError, SubmitError, CancellationError, ProtocolError, ExhaustedError) as e:
        return _error_response(e)

    return jsonify(result)


@app.route('/api/<domain>/records', methods=['GET'])
def records(domain):
    if domain not in DOMAINS:
        return jsonify({'error': 'unknown_domain', 'message': f'Unknown domain: {domain}'}), 404

    target = request.args.get('date')  # e.g. 15/03/2023
    if target:
        try:
            target = parse_date(target)
        except ParseError:
            return jsonify({'error': 'bad_request', 'message': f'Invalid date: {target} (expected dd/mm/yyyy)'}), 400

    try:
        result = get_records(
            make_transport(),
            domain,
            cap_dates=_flag('cap_dates'),
            trace=_flag('trace'),
            date=target or None,
        )
    except (SessionExpiredError, SubmitError, CancellationError, ProtocolError, ExhaustedError) as e:
        return _error_response(e)

    return jsonify({'domain': domain, 'count': len(result), 'records': _to_json(result)})


@app.route('/api/health', methods=['GET'])
def health():
    return jsonify({'status': 'ok', 'domains': sorted(DOMAINS)})


if __name__ == '__main__':
    port = int(os.environ.get('PORT', 5000))
    app.run(host='0.0.0.0', port=port)
