"""
Error kinds raised by the grading services.

Each kind is an HTTPException so routers can let them propagate untouched.
"""
from fastapi import HTTPException


class NotFound(HTTPException):
    def __init__(self, detail: str = "Resource not found"):
        super().__init__(status_code=404, detail=detail)


class Forbidden(HTTPException):
    def __init__(self, detail: str = "Not authorized"):
        super().__init__(status_code=403, detail=detail)


class Conflict(HTTPException):
    def __init__(self, detail: str = "Conflict"):
        super().__init__(status_code=409, detail=detail)


class InvalidState(HTTPException):
    def __init__(self, detail: str = "Operation not allowed in current state"):
        super().__init__(status_code=409, detail=detail)


class ValidationFailed(HTTPException):
    def __init__(self, detail: str = "Validation failed"):
        super().__init__(status_code=422, detail=detail)


class RateLimited(HTTPException):
    def __init__(self, detail: str = "Too many requests", retry_after: int = None):
        headers = {"Retry-After": str(retry_after)} if retry_after else None
        super().__init__(status_code=429, detail=detail, headers=headers)
