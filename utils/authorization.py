"""
Authorization Module

Framework-agnostic authorization errors. Services raise these; routes turn
them into HTTP responses using `status_code`.
"""


class AuthorizationError(Exception):
    """
    Exception raised for authorization failures in the business logic layer.
    This decouples core logic from FastAPI and allows for framework-agnostic error handling.
    """
    def __init__(self, message, status_code=403):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class ShareNotFoundError(AuthorizationError):
    """
    Any share-token failure: unknown, revoked, expired or insufficient scope.

    All cases use the same message and status so a caller probing tokens
    cannot tell them apart.
    """
    MESSAGE = "Share not found"

    def __init__(self):
        super().__init__(self.MESSAGE, status_code=404)
