# app/core/errors.py
from __future__ import annotations


class StockWorkflowError(RuntimeError):
    """
    Base for every business error raised by the stock / transfer services.
    `code` is machine readable, `status_code` is the HTTP status routes use.
    """
    code = "STOCK_ERROR"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(StockWorkflowError):
    code = "NOT_FOUND"
    status_code = 404


class ForbiddenError(StockWorkflowError):
    code = "FORBIDDEN"
    status_code = 403


class InvalidTransitionError(StockWorkflowError):
    code = "INVALID_TRANSITION"
    status_code = 409


class InvalidActionError(StockWorkflowError):
    code = "INVALID_ACTION"
    status_code = 400


class InsufficientStockError(StockWorkflowError):
    code = "INSUFFICIENT_STOCK"
    status_code = 409


class InvalidPayloadError(StockWorkflowError):
    code = "VALIDATION_ERROR"
    status_code = 422


class ImmutableRecordError(StockWorkflowError):
    code = "IMMUTABLE_RECORD"
    status_code = 409
