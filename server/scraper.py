import requests
import pickle
import os
import sys
import json
import base64
import threading
from datetime import datetime

from crawler_errors import CancellationError, ProtocolError, SessionExpiredError
from domains import DOMAINS
from extraction_session import get_options, get_records

COOKIES_FILE = os.environ.get('CEI_COOKIES_FILE', 'cookies.pkl')
REQUEST_TIMEOUT = int(os.environ.get('CEI_REQUEST_TIMEOUT', 30))
COOKIE_DOMAIN = 'b3.com.br'

BROWSER_HEADERS = {
    'User-Agent': 'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36',
    'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8',
    'Accept-Language': 'pt-BR,pt;q=0.9,en-US;q=0.8,en;q=0.7',
    'Connection': 'keep-alive',
}

ASYNC_POST_HEADERS = {
    'Accept': '*/*',
    'Cache-Control': 'no-cache',
    'Content-Type': 'application/x-www-form-urlencoded; charset=UTF-8',
    'X-MicrosoftAjax': 'Delta=true',
    'X-Requested-With': 'XMLHttpRequest',
}


def log(msg):
    print(f'[{datetime.now()}] [transport] {msg}', flush=True)


def _is_login_redirect(location):
    location = location.lower()
    return 'login' in location or 'logon' in location or 'sso' in location


class CookieTransport:
    """
    HTTP transport that forwards caller-provided CEI cookies.

    Cookies come from ``COOKIES_FILE`` or, failing that, the INITIAL_COOKIES
    env var, and are written back after every response so a later run picks
    up refreshed values. One transport belongs to one session.
    """

    def __init__(self, cookies_file=COOKIES_FILE, timeout=REQUEST_TIMEOUT):
        self.cookies_file = cookies_file
        self.timeout = timeout
        self.cookie_dict = {}  # plain {name: value} dict
        self.cancel_event = threading.Event()
        self.load_cookies()

    def cancel(self):
        """Abort the session: the in-flight call (if any) and every later one fail."""
        self.cancel_event.set()

    def _check_cancelled(self):
        if self.cancel_event.is_set():
            raise CancellationError('Transport call cancelled by caller')

    def _cookie_header(self):
        return '; '.join(f'{k}={v}' for k, v in self.cookie_dict.items())

    def load_cookies(self):
        """Load cookies from file, falling back to INITIAL_COOKIES env var."""
        if os.path.exists(self.cookies_file):
            try:
                with open(self.cookies_file, 'rb') as f:
                    self.cookie_dict = pickle.load(f)
                log(f'Loaded {len(self.cookie_dict)} cookies from {self.cookies_file}')
                return
            except (OSError, pickle.UnpicklingError, EOFError) as e:
                log(f'Failed to load {self.cookies_file}: {e}')

        # base64 encoded JSON: plain dict or a browser storageState document
        env_cookies = os.environ.get('INITIAL_COOKIES')
        if env_cookies:
            try:
                cookie_data = json.loads(base64.b64decode(env_cookies))
            except ValueError as e:
                log(f'Failed to parse INITIAL_COOKIES: {e}')
                return

            if isinstance(cookie_data, dict) and 'cookies' in cookie_data:
                log(f'storageState format, {len(cookie_data["cookies"])} total cookies')
                for c in cookie_data['cookies']:
                    if COOKIE_DOMAIN in c.get('domain', ''):
                        self.cookie_dict[c['name']] = c['value']
            elif isinstance(cookie_data, dict):
                self.cookie_dict = dict(cookie_data)

            log(f'Loaded {len(self.cookie_dict)} cookies from INITIAL_COOKIES env var')
            self.save_cookies()
            return

        log('No cookies found!')

    def save_cookies(self):
        with open(self.cookies_file, 'wb') as f:
            pickle.dump(self.cookie_dict, f)

    def _update_cookies_from_response(self, response):
        """Update cookie dict from Set-Cookie response headers."""
        new_cookies = list(response.cookies)
        for cookie in new_cookies:
            self.cookie_dict[cookie.name] = cookie.value
        if new_cookies:
            log(f'Response set {len(new_cookies)} cookies')

    def _check_response(self, method, response):
        self._check_cancelled()
        log(f'{method} Response: {response.status_code}, body length: {len(response.text)} chars')

        if response.status_code in (301, 302, 303, 307, 308):
            location = response.headers.get('Location', '')
            log(f'{method} Redirect to: {location}')
            if _is_login_redirect(location):
                raise SessionExpiredError('Session expired')
            raise ProtocolError(f'Redirected to: {location}')

        if response.status_code != 200:
            log(f'{method} Unexpected status! Body preview: {response.text[:500]}')
            raise ProtocolError(f'Unexpected status: {response.status_code}')

        self._update_cookies_from_response(response)
        self.save_cookies()

    def get(self, url):
        """GET a page with manual Cookie header."""
        self._check_cancelled()
        log(f'GET {url}')
        response = requests.get(
            url,
            headers={**BROWSER_HEADERS, 'Cookie': self._cookie_header()},
            timeout=self.timeout,
            allow_redirects=False,
        )
        self._check_response('GET', response)
        return response.text

    def post(self, url, form_data, referer=None):
        """POST an ASP.NET AJAX async postback with manual Cookie header."""
        self._check_cancelled()
        log(f'POST {url}')
        log(f'POST __EVENTTARGET: {form_data.get("__EVENTTARGET", "?")}')
        log(f'POST __VIEWSTATE length: {len(form_data.get("__VIEWSTATE") or "")}')
        log(f'POST __EVENTVALIDATION length: {len(form_data.get("__EVENTVALIDATION") or "")}')

        headers = {**BROWSER_HEADERS, **ASYNC_POST_HEADERS, 'Cookie': self._cookie_header()}
        if referer:
            headers['Referer'] = referer

        response = requests.post(
            url,
            data=form_data,
            headers=headers,
            timeout=self.timeout,
            allow_redirects=False,
        )
        self._check_response('POST', response)
        log(f'POST response preview: {response.text[:300]}')
        return response.text


def _print_records(records):
    for group in records:
        header = group['institution'] + (f" / {group['account']}" if group.get('account') else '')
        print(f'\n  {header}')
        for key, rows in group.items():
            if isinstance(rows, list):
                print(f'    {key}: {len(rows)} rows')
                for row in rows:
                    print(f'      {row}')


if __name__ == '__main__':
    if len(sys.argv) < 2 or sys.argv[1] not in DOMAINS:
        print(f'Usage: python scraper.py <{"|".join(DOMAINS)}> [dd/mm/yyyy]')
        sys.exit(2)

    domain = sys.argv[1]
    date = sys.argv[2] if len(sys.argv) > 2 else None
    transport = CookieTransport()

    print('\n--- OPTIONS ---')
    options = get_options(transport, domain, trace=True)
    print(f"  Period: {options['minDate']} -> {options['maxDate']}")
    for inst in options['institutions']:
        print(f"  {inst['value']}: {inst['label']}")

    print('\n--- RECORDS ---')
    _print_records(get_records(transport, domain, cap_dates=True, trace=True, date=date))
