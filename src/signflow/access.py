"""Token-gated access and the pending -> signed transition.

The signing token is the real access-control primitive: whoever holds
the current token can read the document, and while it is pending, sign
it. The identity gate layered on top (:meth:`AccessController.confirm_identity`)
is a plain case-insensitive email comparison. It is not a verified
identity proof and anyone who knows the invited address can pass it.

Every mutation goes through the store's compare-and-swap, so two racing
``sign`` calls for the same document cannot both succeed.
"""

import logging
import secrets
from typing import Optional, Union

from .assembler import DocumentAssembler
from .config import SignFlowConfig
from .embedder import SignatureEmbedder, load_signature
from .errors import (
    AlreadySignedError,
    IdentityMismatchError,
    InvalidTokenError,
)
from .models import (
    Agreement,
    CreateResult,
    DocumentRecord,
    DocumentStatus,
    DocumentView,
    SignatureArtifact,
)
from .store import RecordStore
from .validation import EmailDomainPolicy, email_domain, validate_agreement

logger = logging.getLogger("signflow.access")


def _normalize_email(email: str) -> str:
    return email.strip().lower()


class AccessController:
    """Issues tokens, gates access, and signs documents.

    Args:
        store: Record store (the storage collaborator).
        assembler: Renders agreements at creation time.
        embedder: Appends the signature certificate.
        config: Runtime settings (token size, domain policy, canvas).
    """

    def __init__(
        self,
        store: RecordStore,
        assembler: Optional[DocumentAssembler] = None,
        embedder: Optional[SignatureEmbedder] = None,
        config: Optional[SignFlowConfig] = None,
    ) -> None:
        self.store = store
        self.assembler = assembler or DocumentAssembler()
        self.embedder = embedder or SignatureEmbedder()
        self.config = config or SignFlowConfig()

    # ------------------------------------------------------------------
    # Creation and tokens
    # ------------------------------------------------------------------

    def default_policy(self) -> EmailDomainPolicy:
        domain = self.config.required_email_domain
        return EmailDomainPolicy(domain) if domain else EmailDomainPolicy()

    def new_token(self) -> str:
        return secrets.token_urlsafe(self.config.token_bytes)

    def create(
        self,
        agreement: Agreement,
        policy: Optional[EmailDomainPolicy] = None,
    ) -> CreateResult:
        """Validate, assemble, and store a new pending document.

        Args:
            agreement: Agreement to render.
            policy: Email domain policy (defaults to the configured one).

        Returns:
            The document id, its first signing token and the PDF.

        Raises:
            ValidationError: If the agreement is rejected.
        """
        validate_agreement(agreement, policy or self.default_policy())
        pdf = self.assembler.assemble(agreement)

        record = DocumentRecord(
            title=agreement.title,
            pdf=pdf,
            client_name=agreement.client_name,
            client_email=agreement.client_email.strip(),
            token=self.new_token(),
        )
        self.store.create(record)
        return CreateResult(
            document_id=record.document_id,
            token=record.token,
            pdf=pdf,
            signing_url=self.config.signing_url(record.document_id, record.token),
        )

    def issue(self, document_id: str) -> str:
        """Generate a fresh token, invalidating the previous one.

        Used when the agency re-sends the signing link.

        Raises:
            DocumentNotFoundError: If the document does not exist.
            AlreadySignedError: If the document is already signed.
            InvalidTokenError: If a concurrent re-issue replaced the token
                first; the returned token would already be stale.
        """
        record = self.store.get(document_id)
        if record.is_signed:
            raise AlreadySignedError("Document has already been signed")

        updated = record.model_copy(update={"token": self.new_token()})
        swapped = self.store.compare_and_swap(
            document_id, DocumentStatus.PENDING, updated, expected_token=record.token
        )
        if not swapped:
            if self.store.get(document_id).is_signed:
                raise AlreadySignedError("Document has already been signed")
            logger.warning("Concurrent token re-issue for document %s", document_id[:8])
            raise InvalidTokenError("Signing link was re-issued concurrently")
        logger.info("Re-issued signing token for document %s", document_id[:8])
        return updated.token

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def _authorize(self, document_id: str, token: Optional[str]) -> DocumentRecord:
        record = self.store.get(document_id)
        if not token or not secrets.compare_digest(token, record.token):
            logger.warning("Rejected token for document %s", document_id[:8])
            raise InvalidTokenError("Invalid or expired document link")
        return record

    def authorize_read(self, document_id: str, token: Optional[str]) -> DocumentView:
        """Return the document to the holder of its current token.

        Once signed, the same token yields the read-only signed view
        (signed PDF and ``signed_at``).

        Raises:
            DocumentNotFoundError: If the document does not exist.
            InvalidTokenError: If the token is not the current one.
        """
        return DocumentView.from_record(self._authorize(document_id, token))

    # ------------------------------------------------------------------
    # Identity gate
    # ------------------------------------------------------------------

    @staticmethod
    def confirm_identity(expected: Union[DocumentRecord, str], claimed_email: str) -> bool:
        """Case-insensitive, whitespace-trimmed email comparison.

        This stands in for federated sign-in and proves nothing by
        itself. Returns False on mismatch; the caller decides how many
        attempts to allow.

        Args:
            expected: The record, or the invited email address.
            claimed_email: Address entered by the counterparty.
        """
        stored = expected.client_email if isinstance(expected, DocumentRecord) else expected
        stored = _normalize_email(stored)
        return bool(stored) and _normalize_email(claimed_email) == stored

    @staticmethod
    def expected_domain(record: DocumentRecord) -> str:
        """Domain of the invited address, safe to show in messages."""
        return email_domain(record.client_email)

    def verify_identity(self, document_id: str, token: Optional[str], claimed_email: str) -> bool:
        """Token-gated identity check, run before the signing screen.

        Raises:
            DocumentNotFoundError: If the document does not exist.
            InvalidTokenError: If the token is not the current one.
        """
        record = self._authorize(document_id, token)
        ok = self.confirm_identity(record, claimed_email)
        if not ok:
            logger.warning("Identity gate failed for document %s", document_id[:8])
        return ok

    # ------------------------------------------------------------------
    # Signing
    # ------------------------------------------------------------------

    def sign(
        self,
        document_id: str,
        token: Optional[str],
        signature_image: Union[bytes, str],
        claimed_email: str,
        signer_ip: Optional[str] = None,
    ) -> DocumentRecord:
        """Embed the signature and move the document to ``signed``.

        The new PDF, the status and ``signed_at`` are written together by
        one compare-and-swap against ``pending`` and the presented token.

        Args:
            document_id: Document to sign.
            token: Current signing token.
            signature_image: Image bytes, base64, or a ``data:`` URL.
            claimed_email: Identity entered by the counterparty.
            signer_ip: Client address for the record, if known.

        Returns:
            The signed record.

        Raises:
            DocumentNotFoundError: If the document does not exist.
            InvalidTokenError: If the token is not the current one.
            AlreadySignedError: If the document was already signed,
                including by a concurrent request.
            IdentityMismatchError: If ``claimed_email`` fails the gate.
            DecodeError: If the stored PDF or the image cannot be decoded.
        """
        record = self._authorize(document_id, token)
        if record.is_signed:
            logger.warning("Duplicate sign attempt for document %s", document_id[:8])
            raise AlreadySignedError("Document has already been signed")

        if not self.confirm_identity(record, claimed_email):
            domain = self.expected_domain(record)
            logger.warning("Identity gate failed for document %s", document_id[:8])
            raise IdentityMismatchError(
                "Access denied. This document is exclusively assigned to "
                f"an invited @{domain} address.",
                expected_domain=domain,
            )

        artifact = SignatureArtifact(
            image=load_signature(signature_image, self.config.signature_canvas)
        )
        identity = claimed_email.strip()
        signed_pdf = self.embedder.embed(
            record.pdf, artifact.image, identity, signed_at=artifact.captured_at
        )

        signed = record.model_copy(
            update={
                "status": DocumentStatus.SIGNED,
                "pdf": signed_pdf,
                "signed_at": artifact.captured_at,
                "signer_email": identity,
                "signer_ip": signer_ip,
            }
        )
        swapped = self.store.compare_and_swap(
            document_id, DocumentStatus.PENDING, signed, expected_token=record.token
        )
        if not swapped:
            current = self.store.get(document_id)
            if current.is_signed:
                logger.warning("Lost signing race for document %s", document_id[:8])
                raise AlreadySignedError("Document has already been signed")
            raise InvalidTokenError("Invalid or expired document link")

        logger.info("Document %s signed", document_id[:8])
        return signed
