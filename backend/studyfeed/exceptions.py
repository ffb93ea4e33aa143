"""
Exceptions and the custom exception handler for DRF

Provides consistent error response format across the API.
"""
from rest_framework.views import exception_handler
from rest_framework.response import Response
from rest_framework import status
from django.db import IntegrityError
from django.utils.translation import gettext as _
import logging

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """An object store call (upload, url, remove, open) failed."""

    def __init__(self, message, paths=None):
        super().__init__(message)
        self.paths = list(paths or [])


def flatten_errors(errors) -> list[str]:
    """
    Flatten DRF serializer errors into a list of messages.

    Handles nested dicts (field -> messages) and lists (many=True children).
    """
    if isinstance(errors, dict):
        messages = []
        for value in errors.values():
            messages.extend(flatten_errors(value))
        return messages
    if isinstance(errors, (list, tuple)):
        messages = []
        for value in errors:
            messages.extend(flatten_errors(value))
        return messages
    return [str(errors)] if errors else []


def join_errors(errors) -> str:
    return ', '.join(flatten_errors(errors))


def custom_exception_handler(exc, context):
    """
    Custom exception handler that:
    1. Logs all exceptions
    2. Converts Django and storage exceptions to DRF responses
    3. Provides consistent error format
    """

    # Call DRF's default exception handler first
    response = exception_handler(exc, context)

    if response is not None:
        if not isinstance(response.data, dict) or 'error' not in response.data:
            response.data = {
                'success': False,
                'error': join_errors(response.data) or str(exc),
                'details': response.data
            }
        return response

    if isinstance(exc, IntegrityError):
        logger.warning(f"IntegrityError: {exc}")
        return Response(
            {'success': False, 'error': _('Data integrity error. This may be a duplicate entry.')},
            status=status.HTTP_409_CONFLICT
        )

    if isinstance(exc, StorageError):
        logger.error(f"StorageError: {exc}")
        return Response(
            {'success': False, 'error': str(exc)},
            status=status.HTTP_502_BAD_GATEWAY
        )

    if isinstance(exc, ValueError):
        return Response(
            {'success': False, 'error': str(exc)},
            status=status.HTTP_400_BAD_REQUEST
        )

    logger.exception(f"Unhandled exception: {exc}")

    return Response(
        {'success': False, 'error': _('An unexpected error occurred.')},
        status=status.HTTP_500_INTERNAL_SERVER_ERROR
    )
