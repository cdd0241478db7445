"""
HTTP transport for the housekeeping REST backend.

Wraps a requests.Session with bearer-token injection, a single retry for
flaky GETs, and uniform error messages.
"""
import logging
import re
from datetime import datetime, timezone

import jwt
import requests

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 120000
TIMEOUT_MESSAGE = ('The server is taking too long to respond. '
                   'Please try again or narrow the data range.')


class ApiError(Exception):
    """A backend call failed; ``str(err)`` is safe to show to the user."""

    def __init__(self, message, status=None):
        super().__init__(message)
        self.message = message
        self.status = status


class UnauthorizedError(ApiError):
    pass


class RequestTimeout(ApiError):
    pass


def resolve_api_base(base, fallback, force_https=False):
    """Pick the configured base URL (or the fallback) and normalise it."""
    resolved = (base or '').strip() or fallback
    resolved = resolved.rstrip('/')
    if force_https and resolved.startswith('http://'):
        resolved = 'https://' + resolved[len('http://'):]
    return resolved


def token_expired(token, now=None) -> bool:
    """True when the token carries an ``exp`` claim that has passed.

    Only the claim is read; the signature belongs to the backend.
    """
    if not token:
        return False
    try:
        claims = jwt.decode(token, options={'verify_signature': False})
    except jwt.DecodeError:
        return False
    exp = claims.get('exp')
    if exp is None:
        return False
    now = now or datetime.now(timezone.utc)
    return now.timestamp() >= float(exp)


def _error_message(response):
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        msg = body.get('message') or body.get('error')
        if isinstance(msg, dict):
            msg = msg.get('message')
        if msg:
            return str(msg)
    text = (response.text or '').strip()
    if text and not text.startswith('<'):
        return text[:300]
    return f"Request failed with status {response.status_code}"


def _decode(response):
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


class BackendClient:
    def __init__(self, base_url, timeout_ms=DEFAULT_TIMEOUT_MS, token_getter=None, session=None):
        self.base_url = base_url.rstrip('/')
        self.timeout_ms = int(timeout_ms or DEFAULT_TIMEOUT_MS)
        self.token_getter = token_getter
        self.session = session or requests.Session()
        self.session.headers.setdefault('Accept', 'application/json')

    def _url(self, path):
        if re.match(r'^https?://', path):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    def _headers(self):
        headers = {}
        token = self.token_getter() if self.token_getter else None
        if token:
            headers['Authorization'] = f"Bearer {token}"
        return headers

    def _send(self, method, url, timeout_ms, **kwargs):
        return self.session.request(method, url, headers=self._headers(),
                                    timeout=timeout_ms / 1000.0, **kwargs)

    def request(self, method, path, params=None, json=None, data=None, files=None, timeout_ms=None):
        method = method.upper()
        url = self._url(path)
        timeout_ms = timeout_ms or self.timeout_ms
        kwargs = {'params': params, 'json': json, 'data': data, 'files': files}
        try:
            try:
                response = self._send(method, url, timeout_ms, **kwargs)
            except (requests.Timeout, requests.ConnectionError) as e:
                if method != 'GET':
                    raise
                logger.warning("GET %s failed (%s), retrying once", url, e)
                response = self._send(method, url, max(timeout_ms, self.timeout_ms), **kwargs)
            else:
                if method == 'GET' and response.status_code >= 500:
                    logger.warning("GET %s returned %s, retrying once", url, response.status_code)
                    response = self._send(method, url, max(timeout_ms, self.timeout_ms), **kwargs)
        except requests.Timeout as e:
            logger.error("%s %s timed out: %s", method, url, e)
            raise RequestTimeout(TIMEOUT_MESSAGE) from e
        except requests.RequestException as e:
            logger.error("%s %s failed: %s", method, url, e)
            raise ApiError(str(e) or 'Request failed') from e

        if response.status_code == 401:
            raise UnauthorizedError(_error_message(response), status=401)
        if response.status_code >= 400:
            message = _error_message(response)
            logger.error("%s %s -> %s: %s", method, url, response.status_code, message)
            raise ApiError(message, status=response.status_code)
        return _decode(response)

    def get(self, path, params=None, **kwargs):
        return self.request('GET', path, params=params, **kwargs)

    def post(self, path, json=None, **kwargs):
        return self.request('POST', path, json=json, **kwargs)

    def put(self, path, json=None, **kwargs):
        return self.request('PUT', path, json=json, **kwargs)

    def patch(self, path, json=None, **kwargs):
        return self.request('PATCH', path, json=json, **kwargs)

    def delete(self, path, **kwargs):
        return self.request('DELETE', path, **kwargs)
