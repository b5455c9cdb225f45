"""Custom exceptions for the pharmacy POS application."""


def _fmt_qty(value):
    """Render a quantity without trailing zeros."""
    return f"{int(value)}" if value % 1 == 0 else f"{value:.2f}".rstrip('0').rstrip('.')


class PosError(Exception):
    """Base exception for all application errors."""
    def __init__(self, message="An internal error occurred", status_code=500, payload=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    def to_dict(self):
        rv = dict(self.payload or ())
        rv['message'] = self.message
        rv['status'] = 'error'
        return rv


class BusinessLogicError(PosError):
    """Exception raised for business logic violations."""
    def __init__(self, message, status_code=400, payload=None):
        super().__init__(message, status_code, payload)


class NotFoundError(PosError):
    """Exception raised when a resource is not found."""
    def __init__(self, message="Resource not found", payload=None):
        super().__init__(message, 404, payload)


class InsufficientStockError(BusinessLogicError):
    """Raised when one or more products lack on-hand quantity.

    Carries every shortfall, not only the first one found.
    """
    def __init__(self, shortfalls):
        self.shortfalls = list(shortfalls)
        parts = [
            f"{s['product_name']}: cần {_fmt_qty(s['required'])}, còn {_fmt_qty(s['available'])}"
            for s in self.shortfalls
        ]
        message = "Không đủ tồn kho - " + "; ".join(parts)
        super().__init__(message, status_code=409, payload={'shortfalls': [
            {
                'product_id': s['product_id'],
                'product_name': s['product_name'],
                'required': _fmt_qty(s['required']),
                'available': _fmt_qty(s['available']),
            }
            for s in self.shortfalls
        ]})


class StaleSnapshotError(BusinessLogicError):
    """Raised when an inventory snapshot is older than allowed."""
    def __init__(self, age_seconds, max_age_seconds):
        self.age_seconds = age_seconds
        self.max_age_seconds = max_age_seconds
        super().__init__(
            'Dữ liệu tồn kho đã cũ, vui lòng tải lại.',
            status_code=409,
            payload={'age_seconds': round(age_seconds, 1), 'max_age_seconds': max_age_seconds}
        )


class ConcurrentUpdateError(BusinessLogicError):
    """A conditional write kept losing against concurrent writers."""
    def __init__(self, table, row_id, attempts):
        self.table = table
        self.row_id = row_id
        self.attempts = attempts
        super().__init__(
            'Tồn kho vừa được cập nhật bởi giao dịch khác, vui lòng thử lại.',
            status_code=409,
            payload={'table': table, 'row_id': row_id, 'attempts': attempts}
        )


class BackendError(PosError):
    """A call to the data backend returned an error envelope."""
    def __init__(self, message, code=None, table=None, operation=None):
        self.code = code
        self.table = table
        self.operation = operation
        super().__init__(message, 502, payload={'code': code, 'table': table, 'operation': operation})

    @classmethod
    def from_envelope(cls, error, table=None, operation=None):
        return cls(error.get('message', 'Unknown error'), error.get('code'), table, operation)


class SaleCommitError(PosError):
    """A sale commit step failed; completed steps were compensated."""
    def __init__(self, step, cause, rollback_complete=True):
        self.step = step
        self.cause = cause
        self.rollback_complete = rollback_complete
        detail = cause.message if isinstance(cause, PosError) else str(cause)
        status_code = cause.status_code if isinstance(cause, PosError) else 500
        payload = {'step': step, 'rollback_complete': rollback_complete}
        if isinstance(cause, InsufficientStockError):
            payload['shortfalls'] = cause.to_dict()['shortfalls']
        super().__init__(f"Tạo đơn hàng thất bại: {detail}", status_code, payload)


class UnauthorizedError(PosError):
    """Raised when a user lacks permission for an action."""
    def __init__(self, message="Unauthorized access"):
        super().__init__(message, 403)
