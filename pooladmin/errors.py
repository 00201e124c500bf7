from typing import Any, Dict


class AdminServiceError(Exception):
    """Terminal, caller-facing classification of an admin operation failure."""

    status_code = 500
    error_type = "internal_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"error": {"type": self.error_type, "message": self.message}}


class CredentialNotFound(AdminServiceError):
    status_code = 404
    error_type = "not_found"

    def __init__(self, index: int, total: int) -> None:
        super().__init__(f"Credential not found: index {index} (total {total})")
        self.index = index
        self.total = total


class UpstreamError(AdminServiceError):
    status_code = 502
    error_type = "upstream_error"


class InternalError(AdminServiceError):
    status_code = 500
    error_type = "internal_error"


def invalid_request(message: str) -> Dict[str, Any]:
    return {"error": {"type": "invalid_request_error", "message": message}}
