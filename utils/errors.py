"""Error types raised by the store, the aggregator and the API routes.

Each error carries the HTTP status it maps to; main.py renders all of them
as ``{"message": ...}``.
"""
import functools
import logging

import pymongo.errors


logger = logging.getLogger(__name__)


class QAError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(QAError):
    status_code = 400


class AuthError(QAError):
    status_code = 401


class ForbiddenError(AuthError):
    status_code = 403


class NotFoundError(QAError):
    status_code = 404


class StorageError(QAError):
    status_code = 500


def translate_storage_errors(func):
    """Re-raise driver failures from a coroutine as StorageError"""
    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except pymongo.errors.PyMongoError as e:
            logger.exception("Storage failure in %s", func.__qualname__)
            raise StorageError(str(e)) from e
    return wrapper
