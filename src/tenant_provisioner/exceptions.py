"""Error taxonomy for tenant provisioning.

Every failure the workflow knows how to report derives from
``ProvisioningError`` and carries a stable ``code`` so the command line and
the JSON logs can name the violated precondition.
"""

from pathlib import Path


class ProvisioningError(Exception):
    """Base error for the provisioning domain."""

    code = "provisioning_error"


class InvalidFormatError(ProvisioningError):
    """Raised when a tenant name is empty or violates the naming pattern."""

    code = "invalid_format"


class AlreadyExistsError(ProvisioningError):
    """Raised when a tenant directory or document entry already exists."""

    code = "already_exists"


class OutOfRangeError(ProvisioningError):
    """Raised when a port or cache namespace falls outside its bounds."""

    code = "out_of_range"


class ConflictError(ProvisioningError):
    """Raised when a port or cache namespace is already assigned."""

    code = "conflict"


class AnchorNotFoundError(ProvisioningError):
    """Raised when a document no longer contains its insertion anchor.

    This means the document drifted from the expected layout; the caller
    must stop mutating instead of guessing an insertion point.
    """

    code = "anchor_not_found"

    def __init__(self, document: Path | str, anchor: str):
        self.document = Path(document)
        self.anchor = anchor
        super().__init__(f"Anchor {anchor!r} not found in {self.document}")


class DocumentValidationError(ProvisioningError):
    """Raised when a rewritten document would no longer parse."""

    code = "invalid_document"


class ProvisioningIOError(ProvisioningError):
    """Raised when a snapshot, staged write, or scaffold write fails."""

    code = "io_error"


class LockUnavailableError(ProvisioningError):
    """Raised when another provisioning run holds the project lock."""

    code = "lock_unavailable"
