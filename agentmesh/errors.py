"""
Error taxonomy for AgentMesh.

Services and the auth gate raise these; the HTTP layer turns each into an
``{"error": <message>}`` body with the matching status code.
"""


class MeshError(Exception):
    """Base class for errors that are reported back to the caller."""

    status_code = 500

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ValidationError(MeshError):
    """A required field is missing or empty."""

    status_code = 400


class Unauthorized(MeshError):
    """No credential was supplied."""

    status_code = 401


class Forbidden(MeshError):
    """A credential was supplied but matches no room."""

    status_code = 403


class NotFound(MeshError):
    """The referenced record does not exist in the caller's room."""

    status_code = 404
