"""
Error taxonomy for the process workflow engine.

Engine operations raise these; the API layer maps each class to an HTTP
status code.
"""

from typing import List, Optional


class ProcessFlowError(Exception):
    """Base class for all engine errors"""
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ProcessFlowError):
    """Malformed input: missing required field, bad step order, bad form value"""
    status_code = 400

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        self.errors = list(errors) if errors else [message]
        super().__init__(message)

    @classmethod
    def from_errors(cls, errors: List[str], prefix: str = "Dados inválidos") -> 'ValidationError':
        return cls(f"{prefix}: {'; '.join(errors)}", errors)


class NotFoundError(ProcessFlowError):
    """Template, instance, step or related entity absent"""
    status_code = 404


class AuthorizationError(ProcessFlowError):
    """Caller lacks the role or ACL entry for the operation"""
    status_code = 403


class AuthenticationError(ProcessFlowError):
    """No valid caller identity"""
    status_code = 401


class InvalidStateError(ProcessFlowError):
    """Operation not allowed in the current status"""
    status_code = 409
