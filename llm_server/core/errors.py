from __future__ import annotations

from typing import Any


class ServiceError(Exception):
    """Base error for everything the orchestrators can hand back to the API layer."""

    code = "internal_error"

    def __init__(self, message: str, *, code: str | None = None, details: Any = None) -> None:
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.details = details


class UpstreamError(ServiceError):
    code = "upstream_error"


class MemoryStoreError(UpstreamError):
    code = "memory_store_error"


class LLMError(UpstreamError):
    code = "llm_error"


class RequiredLookupError(UpstreamError):
    code = "required_lookup_failed"

    def __init__(self, lookup: str, cause: BaseException) -> None:
        super().__init__(f"required lookup '{lookup}' failed: {cause}")
        self.lookup = lookup
        self.cause = cause


class InsufficientDataError(ServiceError):
    code = "insufficient_data"


class MalformedResponseError(ServiceError):
    code = "malformed_response"


class InvalidRequestError(ServiceError):
    code = "invalid_request"
