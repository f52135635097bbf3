# Shared utilities package
from .response_utils import error_response, success_response

__all__ = [
    "error_response",
    "success_response",
]
