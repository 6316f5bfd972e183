"""
Domain Errors
=============

Exceptions raised by the services. Routers turn these into HTTP responses:

    ValidationError  -> 400
    AuthError        -> 401
    NotFoundError    -> 404
    WorkbookError    -> 500 (the import job is marked FAILED)

Anything else is treated as an internal error (500) and only logged.
"""


class TreeServerError(Exception):
    """Base class for every error the services raise on purpose."""


class ValidationError(TreeServerError):
    """Required input is missing or malformed."""


class WorkbookError(TreeServerError):
    """The uploaded file could not be read as a workbook."""


class NotFoundError(TreeServerError):
    """A requested record does not exist."""


class TreeNotFoundError(NotFoundError):
    def __init__(self, tree_id: str):
        super().__init__(f"Tree not found: {tree_id}")
        self.tree_id = tree_id


class AuthError(TreeServerError):
    """Missing, malformed or expired credentials."""
