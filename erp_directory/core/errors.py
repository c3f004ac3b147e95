"""
core/errors.py
--------------
Domain error taxonomy for the directory engine.

Services raise these; they never build HTTP responses themselves. The single
handler registered in main.create_application() maps each class to its
status_code, so routes only translate errors they want to reshape.

Propagation rules:
  - Schema errors (InvalidReference, DuplicateField) are raised while the
    definition is being written and nothing is persisted.
  - Storage errors (TypeMismatch, MissingRequiredField) reject the whole
    record write.
  - UnresolvedRelation is a read-side marker; it is attached to rendered
    values and never raised out of a read.
"""

from typing import Any, Dict, Optional


class DirectoryError(Exception):
    """Base class for every error raised by the directory engine."""

    status_code: int = 400
    code: str = "directory_error"

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = context

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"code": self.code, "detail": self.message}
        if self.context:
            body["context"] = self.context
        return body


class NotFound(DirectoryError):
    status_code = 404
    code = "not_found"


class InvalidReference(DirectoryError):
    """A definition or value points at something that does not exist here."""

    status_code = 422
    code = "invalid_reference"


class DuplicateField(DirectoryError):
    status_code = 409
    code = "duplicate_field"


class TypeMismatch(DirectoryError):
    status_code = 422
    code = "type_mismatch"


class MissingRequiredField(DirectoryError):
    status_code = 422
    code = "missing_required_field"


class InvalidSelfReference(DirectoryError):
    status_code = 422
    code = "invalid_self_reference"


class CascadeDeleteFailed(DirectoryError):
    status_code = 409
    code = "cascade_delete_failed"


class DirectoryInUse(DirectoryError):
    status_code = 409
    code = "directory_in_use"


class InvalidMetadata(DirectoryError):
    status_code = 422
    code = "invalid_metadata"


class FieldRequired(DirectoryError):
    """A visible, required cascading field has no selection."""

    status_code = 422
    code = "field_required"

    def __init__(self, message: str, field_names: Optional[list] = None) -> None:
        super().__init__(message, fields=list(field_names or []))
        self.field_names = list(field_names or [])


class UnresolvedRelation(DirectoryError):
    """A stored relation value whose target record no longer exists.

    Only ever instantiated to describe a rendered gap (see
    RelationResolver.render_relation); reads do not raise it.
    """

    code = "unresolved_relation"
