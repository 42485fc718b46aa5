"""Tests for token gating, the identity gate, and the signing transition."""

import base64
import threading
from concurrent.futures import ThreadPoolExecutor
from io import BytesIO

import pytest
from pypdf import PdfReader

from signflow.access import AccessController
from signflow.config import SignFlowConfig
from signflow.embedder import CERTIFICATE_HEADING, SignatureEmbedder, count_pages
from signflow.errors import (
    AlreadySignedError,
    DocumentNotFoundError,
    IdentityMismatchError,
    ImageDecodeError,
    InvalidTokenError,
    ValidationError,
)
from signflow.models import DocumentStatus
from signflow.store import MemoryRecordStore
from signflow.validation import EmailDomainPolicy


class TestIdentityGate:
    """Case-insensitive, trimmed email comparison."""

    @pytest.mark.parametrize(
        "stored, claimed, expected",
        [
            ("Person@Example.com", "person@example.com", True),
            (" x@y.com ", "x@y.com", True),
            ("a@b.com", "c@b.com", False),
            ("client@gmail.com", "CLIENT@gmail.com  ", True),
            ("client@gmail.com", "", False),
            ("", "", False),
        ],
    )
    def test_confirm_identity(self, stored, claimed, expected):
        assert AccessController.confirm_identity(stored, claimed) is expected

    def test_confirm_identity_against_record(self, controller, agreement, memory_store):
        created = controller.create(agreement)
        record = memory_store.get(created.document_id)
        assert controller.confirm_identity(record, "Client@Gmail.com")
        assert not controller.confirm_identity(record, "someone@gmail.com")

    def test_verify_identity_is_token_gated(self, controller, agreement):
        created = controller.create(agreement)
        assert controller.verify_identity(created.document_id, created.token, "client@gmail.com")
        assert not controller.verify_identity(created.document_id, created.token, "x@gmail.com")
        with pytest.raises(InvalidTokenError):
            controller.verify_identity(created.document_id, "wrong", "client@gmail.com")


class TestCreate:
    """Validation and initial state."""

    def test_create_pending_document(self, controller, agreement, memory_store):
        created = controller.create(agreement)
        record = memory_store.get(created.document_id)
        assert record.status == DocumentStatus.PENDING
        assert record.token == created.token
        assert record.pdf == created.pdf
        assert record.signed_at is None
        assert created.signing_url.endswith(f"/sign/{created.document_id}?token={created.token}")

    def test_tokens_are_unique_and_long(self, controller, agreement):
        tokens = {controller.create(agreement).token for _ in range(5)}
        assert len(tokens) == 5
        assert all(len(t) >= 40 for t in tokens)

    def test_rejects_wrong_domain(self, controller, agreement):
        bad = agreement.model_copy(update={"client_email": "client@example.com"})
        with pytest.raises(ValidationError) as exc_info:
            controller.create(bad)
        assert exc_info.value.fields == ["client_email"]
        assert "gmail.com" in str(exc_info.value)

    def test_rejects_missing_required_fields(self, controller, agreement):
        bad = agreement.model_copy(update={"client_name": "", "project_name": " "})
        with pytest.raises(ValidationError) as exc_info:
            controller.create(bad)
        assert exc_info.value.fields == ["client_name", "project_name"]

    def test_caller_supplied_policy(self, controller, agreement):
        other = agreement.model_copy(update={"client_email": "client@acme.example"})
        created = controller.create(other, policy=EmailDomainPolicy("acme.example"))
        assert created.document_id

    def test_policy_disabled_by_config(self, memory_store, agreement):
        controller = AccessController(memory_store, config=SignFlowConfig(required_email_domain=""))
        other = agreement.model_copy(update={"client_email": "client@acme.example"})
        assert controller.create(other).token


class TestAuthorizeRead:
    """Token-gated reads."""

    def test_read_is_idempotent(self, controller, agreement):
        created = controller.create(agreement)
        first = controller.authorize_read(created.document_id, created.token)
        second = controller.authorize_read(created.document_id, created.token)
        assert first == second
        assert first.status == DocumentStatus.PENDING
        assert first.pdf == created.pdf

    def test_unknown_document(self, controller):
        with pytest.raises(DocumentNotFoundError):
            controller.authorize_read("missing", "token")

    @pytest.mark.parametrize("token", ["", None, "not-the-token"])
    def test_bad_token(self, controller, agreement, token):
        created = controller.create(agreement)
        with pytest.raises(InvalidTokenError):
            controller.authorize_read(created.document_id, token)

    def test_not_found_and_invalid_token_are_distinct(self):
        assert not issubclass(DocumentNotFoundError, InvalidTokenError)
        assert not issubclass(InvalidTokenError, DocumentNotFoundError)


class TestReissue:
    """Re-sending the link invalidates the old token."""

    def test_reissue_invalidates_previous_token(self, controller, agreement):
        created = controller.create(agreement)
        fresh = controller.issue(created.document_id)
        assert fresh != created.token
        with pytest.raises(InvalidTokenError):
            controller.authorize_read(created.document_id, created.token)
        assert controller.authorize_read(created.document_id, fresh).status == DocumentStatus.PENDING

    def test_sign_with_reissued_over_token(self, controller, agreement, signature_png):
        created = controller.create(agreement)
        controller.issue(created.document_id)
        with pytest.raises(InvalidTokenError):
            controller.sign(created.document_id, created.token, signature_png, "client@gmail.com")

    def test_reissue_after_signing(self, controller, agreement, signature_png):
        created = controller.create(agreement)
        controller.sign(created.document_id, created.token, signature_png, "client@gmail.com")
        with pytest.raises(AlreadySignedError):
            controller.issue(created.document_id)

    def test_reissue_unknown(self, controller):
        with pytest.raises(DocumentNotFoundError):
            controller.issue("missing")

    def test_racing_reissues_return_only_live_tokens(self, agreement):
        store = _GatedStore(parties=2)
        controller = AccessController(store)
        created = controller.create(agreement)
        store.gated = True

        def attempt(_):
            try:
                return controller.issue(created.document_id)
            except InvalidTokenError as exc:
                return exc

        with ThreadPoolExecutor(max_workers=2) as pool:
            results = list(pool.map(attempt, range(2)))
        store.gated = False

        tokens = [r for r in results if isinstance(r, str)]
        assert len(tokens) == 1
        assert sum(isinstance(r, InvalidTokenError) for r in results) == 1
        assert store.get(created.document_id).token == tokens[0]
        assert controller.authorize_read(created.document_id, tokens[0]).status == DocumentStatus.PENDING


class _GatedStore(MemoryRecordStore):
    """Holds each thread's first read at a barrier so read-then-write callers overlap."""

    def __init__(self, parties: int) -> None:
        super().__init__()
        self.gated = False
        self.barrier = threading.Barrier(parties, timeout=10)
        self._seen = threading.local()

    def get(self, document_id):
        record = super().get(document_id)
        if self.gated and not getattr(self._seen, "done", False):
            self._seen.done = True
            self.barrier.wait()
        return record


class TestSign:
    """The pending -> signed transition."""

    def test_scenario(self, controller, agreement, signature_png, memory_store):
        created = controller.create(agreement)
        pages_before = count_pages(created.pdf)

        record = controller.sign(
            created.document_id, created.token, signature_png, "CLIENT@gmail.com"
        )
        assert record.status == DocumentStatus.SIGNED
        assert record.signed_at is not None
        assert record.signer_email == "CLIENT@gmail.com"
        assert count_pages(record.pdf) == pages_before + 1

        stored = memory_store.get(created.document_id)
        assert stored == record

        with pytest.raises(AlreadySignedError):
            controller.sign(created.document_id, created.token, signature_png, "CLIENT@gmail.com")
        assert memory_store.get(created.document_id) == record

    def test_signed_view_after_signing(self, controller, agreement, signature_png):
        created = controller.create(agreement)
        record = controller.sign(created.document_id, created.token, signature_png, "client@gmail.com")
        view = controller.authorize_read(created.document_id, created.token)
        assert view.status == DocumentStatus.SIGNED
        assert view.signed_at == record.signed_at
        assert view.pdf == record.pdf

    def test_data_url_signature(self, controller, agreement, signature_png):
        created = controller.create(agreement)
        url = "data:image/png;base64," + base64.b64encode(signature_png).decode()
        record = controller.sign(created.document_id, created.token, url, "client@gmail.com")
        assert record.is_signed

    def test_identity_mismatch(self, controller, agreement, signature_png, memory_store):
        created = controller.create(agreement)
        with pytest.raises(IdentityMismatchError) as exc_info:
            controller.sign(created.document_id, created.token, signature_png, "other@gmail.com")
        message = str(exc_info.value)
        assert "gmail.com" in message
        assert "client@gmail.com" not in message
        assert exc_info.value.expected_domain == "gmail.com"
        assert memory_store.get(created.document_id).status == DocumentStatus.PENDING

    def test_invalid_token_checked_before_identity(self, controller, agreement, signature_png):
        created = controller.create(agreement)
        with pytest.raises(InvalidTokenError):
            controller.sign(created.document_id, "bogus", signature_png, "other@gmail.com")

    def test_bad_image_leaves_document_untouched(self, controller, agreement, memory_store):
        created = controller.create(agreement)
        before = memory_store.get(created.document_id)
        with pytest.raises(ImageDecodeError):
            controller.sign(created.document_id, created.token, b"not an image", "client@gmail.com")
        assert memory_store.get(created.document_id) == before

    def test_unknown_document(self, controller, signature_png):
        with pytest.raises(DocumentNotFoundError):
            controller.sign("missing", "token", signature_png, "client@gmail.com")

    def test_records_signer_ip(self, controller, agreement, signature_png):
        created = controller.create(agreement)
        record = controller.sign(
            created.document_id, created.token, signature_png, "client@gmail.com",
            signer_ip="203.0.113.7",
        )
        assert record.signer_ip == "203.0.113.7"


class _SlowEmbedder(SignatureEmbedder):
    """Holds every caller at a barrier so the swaps really race."""

    def __init__(self, parties: int) -> None:
        self.barrier = threading.Barrier(parties, timeout=10)

    def embed(self, *args, **kwargs):
        result = super().embed(*args, **kwargs)
        self.barrier.wait()
        return result


class TestConcurrentSigning:
    """At-most-once signing under contention."""

    def test_exactly_one_wins(self, memory_store, agreement, signature_png):
        workers = 4
        controller = AccessController(memory_store, embedder=_SlowEmbedder(workers))
        created = controller.create(agreement)
        pages_before = count_pages(created.pdf)

        def attempt(_):
            try:
                return controller.sign(
                    created.document_id, created.token, signature_png, "client@gmail.com"
                )
            except AlreadySignedError as exc:
                return exc

        with ThreadPoolExecutor(max_workers=workers) as pool:
            results = list(pool.map(attempt, range(workers)))

        winners = [r for r in results if not isinstance(r, Exception)]
        losers = [r for r in results if isinstance(r, AlreadySignedError)]
        assert len(winners) == 1
        assert len(losers) == workers - 1

        stored = memory_store.get(created.document_id)
        assert stored.status == DocumentStatus.SIGNED
        assert stored.pdf == winners[0].pdf
        assert count_pages(stored.pdf) == pages_before + 1

    def test_file_store_race(self, tmp_store, agreement, signature_png):
        workers = 3
        controller = AccessController(tmp_store, embedder=_SlowEmbedder(workers))
        created = controller.create(agreement)

        def attempt(_):
            try:
                controller.sign(created.document_id, created.token, signature_png, "client@gmail.com")
                return True
            except AlreadySignedError:
                return False

        with ThreadPoolExecutor(max_workers=workers) as pool:
            outcomes = list(pool.map(attempt, range(workers)))

        assert outcomes.count(True) == 1
        stored = tmp_store.get(created.document_id)
        assert count_pages(stored.pdf) == count_pages(created.pdf) + 1


class TestCertificate:
    """The signed PDF carries the certificate page."""

    def test_certificate_names_signer(self, controller, agreement, signature_png):
        created = controller.create(agreement)
        record = controller.sign(created.document_id, created.token, signature_png, " client@gmail.com ")
        text = PdfReader(BytesIO(record.pdf)).pages[-1].extract_text()
        assert CERTIFICATE_HEADING in text
        assert "client@gmail.com" in text
