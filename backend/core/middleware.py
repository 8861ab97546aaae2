"""
Custom middleware for the AfriMobile share platform.
"""
import logging
import re
import uuid

from django.conf import settings
from django.utils.deprecation import MiddlewareMixin

logger = logging.getLogger(__name__)

_SAFE_REQUEST_ID = re.compile(r'^[A-Za-z0-9\-_.]{1,64}$')


class CorrelationIdMiddleware(MiddlewareMixin):
    """
    Attach a correlation id to every request so that log lines emitted
    while handling a purchase or a webhook can be tied together.
    The id is taken from ``X-Request-ID`` when the caller supplies a sane one.
    """

    header = 'X-Request-ID'

    def process_request(self, request):
        incoming = request.headers.get(self.header, '')
        request.correlation_id = incoming if _SAFE_REQUEST_ID.match(incoming) else uuid.uuid4().hex
        return None

    def process_response(self, request, response):
        correlation_id = getattr(request, 'correlation_id', None)
        if correlation_id:
            response[self.header] = correlation_id
        return response


class SecurityHeadersMiddleware(MiddlewareMixin):
    """Add security headers to API responses."""

    def process_response(self, request, response):
        response['X-Content-Type-Options'] = 'nosniff'
        response['X-Frame-Options'] = 'DENY'
        response['Referrer-Policy'] = 'strict-origin-when-cross-origin'

        # API only serves JSON; admin pages keep Django's defaults
        if not settings.DEBUG and not request.path.startswith('/admin/'):
            response['Content-Security-Policy'] = "default-src 'none'; frame-ancestors 'none';"

        return response


def get_correlation_id(request):
    """Return the request's correlation id, generating one for bare test requests."""
    correlation_id = getattr(request, 'correlation_id', None)
    if not correlation_id:
        correlation_id = request.headers.get('X-Request-ID') or uuid.uuid4().hex
    return correlation_id
