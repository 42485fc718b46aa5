"""Exception taxonomy for SignFlow.

Every failure a caller can act on has its own class so transports can
tell them apart (a stale link and an unknown document need different
guidance). Each class carries a short ``kind`` string that the REST
layer puts in error bodies.
"""

from typing import Optional


class SignFlowError(Exception):
    """Base class for all SignFlow errors."""

    kind = "error"


class ValidationError(SignFlowError, ValueError):
    """The agreement was rejected before assembly.

    Attributes:
        fields: Names of the offending fields.
    """

    kind = "validation_error"

    def __init__(self, message: str, fields: Optional[list[str]] = None) -> None:
        super().__init__(message)
        self.fields = fields or []


class DocumentNotFoundError(SignFlowError, LookupError):
    """No record matches the document id."""

    kind = "not_found"


class InvalidTokenError(SignFlowError):
    """The token is missing, stale, or was re-issued over."""

    kind = "invalid_token"


class IdentityMismatchError(SignFlowError):
    """The claimed email does not match the invited counterparty.

    Attributes:
        expected_domain: Domain of the invited address, safe to show.
    """

    kind = "identity_mismatch"

    def __init__(self, message: str, expected_domain: str = "") -> None:
        super().__init__(message)
        self.expected_domain = expected_domain


class AlreadySignedError(SignFlowError):
    """The document has already been signed; nothing was changed."""

    kind = "already_signed"


class DecodeError(SignFlowError, ValueError):
    """Malformed binary input. The stored document is left untouched."""

    kind = "decode_error"


class DocumentDecodeError(DecodeError):
    """The stored bytes are not a parseable PDF."""


class ImageDecodeError(DecodeError):
    """The signature payload is not a decodable raster image."""
