"""
Errors returned to the RPC clients.

Each error carries a status code (NOT_FOUND, ALREADY_EXISTS, INVALID_ARGUMENT,
INTERNAL or UNKNOWN) and a machine-readable reason, for example JOB_NOT_FOUND.
They are rendered as {"code": ..., "reason": ..., "message": ...}.
"""
import logging
from django.db import DatabaseError
from rest_framework import status
from rest_framework.exceptions import APIException, ValidationError
from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


class AdapterError(APIException):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = 'INTERNAL'
    default_reason = 'INTERNAL_ERROR'
    default_detail = 'Internal error.'

    def __init__(self, message=None, reason=None, errors=None):
        super().__init__(detail=message)
        self.reason = reason or self.default_reason
        self.message = str(self.detail)
        self.errors = errors

    def __str__(self):
        return '{} {}: {}'.format(self.code, self.reason, self.message)


class NotFound(AdapterError):
    status_code = status.HTTP_404_NOT_FOUND
    code = 'NOT_FOUND'
    default_reason = 'NOT_FOUND'
    default_detail = 'Not found.'


class AlreadyExists(AdapterError):
    status_code = status.HTTP_409_CONFLICT
    code = 'ALREADY_EXISTS'
    default_reason = 'ALREADY_EXISTS'
    default_detail = 'Already exists.'


class InvalidArgument(AdapterError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = 'INVALID_ARGUMENT'
    default_reason = 'INVALID_REQUEST'
    default_detail = 'Invalid request.'


class Internal(AdapterError):
    pass


class Unknown(AdapterError):
    code = 'UNKNOWN'
    default_reason = 'UNKNOWN'
    default_detail = 'Unknown error.'


class CommandFailed(Internal):
    """An external command failed, timed out or could not be started"""
    default_reason = 'COMMAND_EXEC_FAILED'
    default_detail = 'Exec command failed.'


class ControllerUnreachable(CommandFailed):
    """The output of a command shows that slurmctld can't be contacted"""
    default_reason = 'SLURMCTLD_FAILED'
    default_detail = 'Slurmctld down.'


def rpc_exception_handler(exc, context):
    if isinstance(exc, ValidationError):
        exc = InvalidArgument(errors=exc.detail)
    elif isinstance(exc, DatabaseError):
        exc = Internal(str(exc), reason='SQL_QUERY_FAILED')

    if not isinstance(exc, AdapterError):
        return exception_handler(exc, context)

    view = context.get('view')
    logger.error('{} failed: {}'.format(getattr(view, 'rpc_name', 'request'), exc))
    data = {
        'code': exc.code,
        'reason': exc.reason,
        'message': exc.message,
    }
    if exc.errors:
        data['errors'] = exc.errors
    return Response(data, status=exc.status_code)
