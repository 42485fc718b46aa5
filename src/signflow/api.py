"""SignFlow REST API — FastAPI server for agreement signing.

The agency creates documents and re-sends links; the counterparty reads
and signs through the token-gated ``/public``, ``/verify-identity`` and
``/sign`` endpoints. Every error kind maps to its own status code and
carries an ``error`` field so clients can show the right guidance.

PDFs are returned base64-encoded in JSON bodies, or raw from ``/pdf``.
"""

import base64
import logging
from datetime import datetime
from functools import lru_cache
from typing import Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel

from .access import AccessController
from .config import SignFlowConfig
from .errors import (
    AlreadySignedError,
    DecodeError,
    DocumentNotFoundError,
    IdentityMismatchError,
    InvalidTokenError,
    SignFlowError,
    ValidationError,
)
from .models import Agreement, DocumentStatus, DocumentView
from .store import FileRecordStore

logger = logging.getLogger("signflow.api")

app = FastAPI(
    title="SignFlow",
    description="Agreement assembly and token-gated e-signing.",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@lru_cache(maxsize=1)
def get_controller() -> AccessController:
    """Process-wide controller backed by the filesystem store."""
    config = SignFlowConfig.from_env()
    return AccessController(FileRecordStore(config.data_dir), config=config)


_STATUS_CODES: dict[type, int] = {
    ValidationError: 422,
    DocumentNotFoundError: 404,
    InvalidTokenError: 403,
    IdentityMismatchError: 403,
    AlreadySignedError: 409,
    DecodeError: 422,
}


@app.exception_handler(SignFlowError)
async def signflow_error_handler(request: Request, exc: SignFlowError) -> JSONResponse:
    status_code = next(
        (code for cls, code in _STATUS_CODES.items() if isinstance(exc, cls)), 400
    )
    logger.info("%s %s -> %d (%s)", request.method, request.url.path, status_code, exc.kind)
    body: dict = {"detail": str(exc), "error": exc.kind}
    if isinstance(exc, ValidationError):
        body["fields"] = exc.fields
    if isinstance(exc, IdentityMismatchError):
        body["expected_domain"] = exc.expected_domain
    return JSONResponse(status_code=status_code, content=body)


# ---------------------------------------------------------------------------
# Request / response models
# ---------------------------------------------------------------------------

class CreateResponse(BaseModel):
    """A freshly created document and its signing link."""

    document_id: str
    token: str
    signing_url: Optional[str] = None
    pdf: str


class DocumentResponse(BaseModel):
    """Token-gated view of a document."""

    document_id: str
    title: str
    client_name: str
    status: DocumentStatus
    signed_at: Optional[datetime] = None
    pdf: str

    @classmethod
    def from_view(cls, view: DocumentView) -> "DocumentResponse":
        return cls(
            document_id=view.document_id,
            title=view.title,
            client_name=view.client_name,
            status=view.status,
            signed_at=view.signed_at,
            pdf=_b64(view.pdf),
        )


class IdentityRequest(BaseModel):
    """Request body for the identity gate."""

    token: str
    email: str


class IdentityResponse(BaseModel):
    authenticated: bool
    expected_domain: str


class SignRequest(BaseModel):
    """Request body for signing.

    ``data_url`` is a ``data:image/...;base64,`` URL or plain base64 of
    any image format; it is normalized server-side.
    """

    token: str
    email: str
    data_url: str


class ResendResponse(BaseModel):
    document_id: str
    token: str
    signing_url: str


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


# ---------------------------------------------------------------------------
# Agency endpoints
# ---------------------------------------------------------------------------

@app.post("/api/documents", response_model=CreateResponse, status_code=201)
def create_document(
    agreement: Agreement,
    controller: AccessController = Depends(get_controller),
) -> CreateResponse:
    """Validate and render an agreement, returning its signing link."""
    result = controller.create(agreement)
    return CreateResponse(
        document_id=result.document_id,
        token=result.token,
        signing_url=result.signing_url,
        pdf=_b64(result.pdf),
    )


@app.post("/api/documents/{document_id}/resend", response_model=ResendResponse)
def resend_link(
    document_id: str,
    controller: AccessController = Depends(get_controller),
) -> ResendResponse:
    """Re-issue the signing token. The previous link stops working.

    Delivery of the new link is up to the caller.
    """
    token = controller.issue(document_id)
    return ResendResponse(
        document_id=document_id,
        token=token,
        signing_url=controller.config.signing_url(document_id, token),
    )


# ---------------------------------------------------------------------------
# Counterparty endpoints (token-gated)
# ---------------------------------------------------------------------------

@app.get("/api/documents/{document_id}/public", response_model=DocumentResponse)
def get_public_document(
    document_id: str,
    token: str = Query(..., description="Signing token from the link"),
    controller: AccessController = Depends(get_controller),
) -> DocumentResponse:
    """Read a document. Signed documents return the signed copy."""
    return DocumentResponse.from_view(controller.authorize_read(document_id, token))


@app.get("/api/documents/{document_id}/pdf")
def download_pdf(
    document_id: str,
    token: str = Query(..., description="Signing token from the link"),
    controller: AccessController = Depends(get_controller),
) -> Response:
    """Download the current PDF."""
    view = controller.authorize_read(document_id, token)
    suffix = "signed" if view.status == DocumentStatus.SIGNED else "unsigned"
    return Response(
        content=view.pdf,
        media_type="application/pdf",
        headers={
            "Content-Disposition": f'attachment; filename="{document_id}-{suffix}.pdf"'
        },
    )


@app.post("/api/documents/{document_id}/verify-identity", response_model=IdentityResponse)
def verify_identity(
    document_id: str,
    req: IdentityRequest,
    controller: AccessController = Depends(get_controller),
) -> IdentityResponse:
    """Check the claimed email against the invited counterparty.

    A plain string comparison, not a verified sign-in.
    """
    ok = controller.verify_identity(document_id, req.token, req.email)
    record = controller.store.get(document_id)
    return IdentityResponse(authenticated=ok, expected_domain=controller.expected_domain(record))


@app.post("/api/documents/{document_id}/sign", response_model=DocumentResponse)
def sign_document(
    document_id: str,
    req: SignRequest,
    request: Request,
    controller: AccessController = Depends(get_controller),
) -> DocumentResponse:
    """Embed the signature and mark the document signed."""
    signer_ip = request.client.host if request.client else None
    record = controller.sign(
        document_id,
        req.token,
        req.data_url,
        req.email,
        signer_ip=signer_ip,
    )
    return DocumentResponse.from_view(DocumentView.from_record(record))


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------

@app.get("/api/health")
async def health() -> dict:
    """Health check."""
    return {
        "status": "ok",
        "service": "signflow",
        "version": "0.1.0",
    }
