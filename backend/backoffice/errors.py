from __future__ import annotations
"""Typed error hierarchy shared by services and routes.

Services raise these for not-found / validation / permission / conflict cases;
the application error handler renders them in the standard JSON error shape:

    {"error": {"status": 409, "title": "Lock Conflict", "detail": "..."}}
"""
from typing import Optional


class BackofficeError(Exception):
    status = 400
    title = 'Bad Request'

    def __init__(self, detail: str = ''):
        super().__init__(detail)
        self.detail = detail

    def to_dict(self):
        return {
            'error': {
                'status': self.status,
                'title': self.title,
                'detail': self.detail,
            }
        }


class ValidationError(BackofficeError):
    status = 400
    title = 'Bad Request'


class NotFoundError(BackofficeError):
    status = 404
    title = 'Not Found'


class PermissionDeniedError(BackofficeError):
    status = 403
    title = 'Forbidden'


class LockConflictError(BackofficeError):
    status = 409
    title = 'Lock Conflict'

    def __init__(self, detail: str = '', holder_name: Optional[str] = None):
        super().__init__(detail)
        self.holder_name = holder_name

    def to_dict(self):
        payload = super().to_dict()
        payload['error']['holder_name'] = self.holder_name
        return payload


class PaymentError(BackofficeError):
    status = 409
    title = 'Payment Rejected'


__all__ = [
    'BackofficeError', 'ValidationError', 'NotFoundError', 'PermissionDeniedError',
    'LockConflictError', 'PaymentError',
]
