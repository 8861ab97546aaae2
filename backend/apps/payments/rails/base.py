"""
Shared plumbing for outbound rail clients.
"""
import logging

import requests
from django.conf import settings
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from backend.core.exceptions import RailError

logger = logging.getLogger(__name__)


def build_session(allowed_methods=("GET", "POST"), backoff_factor=1):
    """``requests`` session that retries 5xx answers with exponential backoff."""
    session = requests.Session()
    retries = Retry(
        total=3,
        backoff_factor=backoff_factor,
        status_forcelist=[500, 502, 503, 504],
        allowed_methods=list(allowed_methods),
        raise_on_status=False
    )
    adapter = HTTPAdapter(max_retries=retries)
    session.mount('https://', adapter)
    session.mount('http://', adapter)
    return session


def rail_timeout():
    return settings.SHARE_PLATFORM["RAIL_TIMEOUT_SECONDS"]


def parse_response(response, rail):
    """
    Decode a JSON response, mapping HTTP failures to ``RailError``.
    5xx answers are transient, anything else that is not 2xx is terminal.
    """
    if response.status_code >= 500:
        raise RailError(
            f"{rail} is unavailable (HTTP {response.status_code}).",
            rail=rail,
            transient=True,
        )
    try:
        data = response.json()
    except ValueError:
        raise RailError(f"Invalid JSON response from {rail}.", rail=rail)
    if response.status_code >= 400:
        message = data.get('message') if isinstance(data, dict) else None
        raise RailError(message or f"{rail} rejected the request (HTTP {response.status_code}).", rail=rail)
    return data


def send(session, method, url, rail, **kwargs):
    """Perform a request and translate transport errors."""
    kwargs.setdefault('timeout', rail_timeout())
    try:
        response = session.request(method, url, **kwargs)
    except (requests.Timeout, requests.ConnectionError) as e:
        logger.error(f"{rail} call to {url} failed: {e}")
        raise RailError(f"{rail} could not be reached.", rail=rail, transient=True)
    except requests.RequestException as e:
        logger.exception(f"{rail} call to {url} failed: {e}")
        raise RailError(f"{rail} request failed.", rail=rail)
    return parse_response(response, rail)


def mask_sensitive_data(payload):
    """Remove sensitive fields from payload before logging."""
    if not isinstance(payload, dict):
        return payload
    masked = payload.copy()
    for key in ['email', 'customer', 'customerEmail', 'authorization', 'card']:
        if key in masked:
            masked[key] = '***REDACTED***'
    if 'data' in masked and isinstance(masked['data'], dict):
        masked['data'] = mask_sensitive_data(masked['data'])
    return masked
