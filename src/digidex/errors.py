"""Failure taxonomy shared by the fetcher, the image cache and the repository."""

from __future__ import annotations


class DigidexError(Exception):
    code = "digidex_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidRequest(DigidexError):
    code = "invalid_request"


class InvalidResponse(DigidexError):
    code = "invalid_response"


class HTTPStatusError(DigidexError):
    code = "http_status"

    def __init__(self, status_code: int, url: str = "") -> None:
        super().__init__(f"HTTP error with status code: {status_code}")
        self.status_code = status_code
        self.url = url


class DecodeFailure(DigidexError):
    code = "decode_failure"

    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.cause = cause


class TransportFailure(DigidexError):
    code = "transport_failure"

    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.cause = cause


class NotFound(DigidexError):
    code = "not_found"
