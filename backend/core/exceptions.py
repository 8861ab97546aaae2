"""
Domain exceptions and DRF exception handler for the AfriMobile share platform.
"""
import logging
import uuid

from rest_framework import status
from rest_framework.exceptions import APIException
from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


class SharePlatformValidationError(APIException):
    """
    Bad input: quantity, months, amount, currency or tx hash format.
    Automatically returns HTTP 400 Bad Request.
    """
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'The request could not be validated.'
    default_code = 'validation_error'


class NotFoundError(APIException):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = 'The requested record does not exist.'
    default_code = 'not_found'


class ConflictingStateError(APIException):
    """
    Operation not allowed in the current state (settling a failed
    transaction, a second active plan, a reused chain hash, ...).
    """
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'The operation conflicts with the current state.'
    default_code = 'conflicting_state'


class InsufficientCapacityError(APIException):
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'Not enough shares are available.'
    default_code = 'insufficient_capacity'

    def __init__(self, detail=None, code=None, requested=None, available=None):
        super().__init__(detail=detail, code=code)
        self.requested = requested
        self.available = available


class RailError(APIException):
    """
    External payment rail failure.

    ``transient`` errors (timeouts, 5xx, unreachable node) leave the
    transaction where it was and the client may retry. Permanent errors
    are reported as a bad gateway response.
    """
    status_code = status.HTTP_502_BAD_GATEWAY
    default_detail = 'The payment provider could not process the request.'
    default_code = 'rail_error'

    def __init__(self, detail=None, code=None, rail=None, transient=False):
        super().__init__(detail=detail, code=code)
        self.rail = rail
        self.transient = transient
        if transient:
            self.status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class LedgerIntegrityError(APIException):
    """
    An invariant check failed (negative inventory, aggregate drift on a
    strict reconcile). Never retried automatically.
    """
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = 'A ledger integrity check failed.'
    default_code = 'integrity_error'

    def __init__(self, detail=None, code=None):
        super().__init__(detail=detail, code=code)
        self.incident_id = uuid.uuid4().hex[:12].upper()
        logger.critical("Ledger integrity incident %s: %s", self.incident_id, self.detail)


def custom_exception_handler(exc, context):
    """
    Custom exception handler for DRF.
    Standardizes all API error responses into a consistent format.
    """
    # Call REST framework's default exception handler first
    response = exception_handler(exc, context)

    if response is not None:
        if isinstance(response.data, dict) and 'detail' in response.data:
            message = response.data['detail']
        else:
            # Field errors from serializers come through as a dict of lists
            message = 'Invalid input.'

        custom_data = {
            'error': True,
            'code': getattr(exc, 'default_code', response.status_code),
            'message': message,
            'details': response.data,
        }

        if isinstance(exc, RailError):
            custom_data['retry'] = exc.transient
        elif isinstance(exc, InsufficientCapacityError) and exc.requested is not None:
            custom_data['requested'] = exc.requested
            custom_data['available'] = exc.available
        elif isinstance(exc, LedgerIntegrityError):
            custom_data['message'] = 'Something went wrong on our side. Please contact support.'
            custom_data['incident_id'] = exc.incident_id
            custom_data['details'] = None

        response.data = custom_data
    else:
        logger.exception("Unhandled API exception", exc_info=exc)
        response = Response({
            'error': True,
            'code': status.HTTP_500_INTERNAL_SERVER_ERROR,
            'message': 'Internal server error',
            'details': None,
        }, status=status.HTTP_500_INTERNAL_SERVER_ERROR)

    return response
