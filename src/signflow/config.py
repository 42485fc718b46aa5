"""Runtime configuration for SignFlow.

Defaults live on the model; ``from_env`` overlays ``SIGNFLOW_*``
environment variables, and the CLI overrides both with its options.
"""

import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field

DEFAULT_SIGNFLOW_DIR = Path.home() / ".signflow"
DEFAULT_EMAIL_DOMAIN = "gmail.com"
DEFAULT_BASE_URL = "http://localhost:8400"


class SignFlowConfig(BaseModel):
    """Settings shared by the service, API, and CLI.

    Attributes:
        data_dir: Root directory for the filesystem record store.
        required_email_domain: Domain every counterparty email must use.
            An empty string disables the policy.
        token_bytes: Entropy of generated signing tokens, in bytes.
        signature_canvas: (width, height) in pixels of the white canvas
            uploaded signatures are normalized onto.
        public_base_url: Base URL used to build signing links.
    """

    data_dir: Path = DEFAULT_SIGNFLOW_DIR
    required_email_domain: str = DEFAULT_EMAIL_DOMAIN
    token_bytes: int = Field(32, ge=16)
    signature_canvas: tuple[int, int] = (600, 200)
    public_base_url: str = DEFAULT_BASE_URL

    @classmethod
    def from_env(cls, data_dir: Optional[Path] = None) -> "SignFlowConfig":
        """Build a config from ``SIGNFLOW_*`` environment variables.

        Args:
            data_dir: Explicit data directory; wins over the environment.
        """
        values: dict = {}
        env_dir = os.environ.get("SIGNFLOW_DATA_DIR")
        if data_dir is not None:
            values["data_dir"] = Path(data_dir)
        elif env_dir:
            values["data_dir"] = Path(env_dir).expanduser()
        if "SIGNFLOW_EMAIL_DOMAIN" in os.environ:
            values["required_email_domain"] = os.environ["SIGNFLOW_EMAIL_DOMAIN"]
        if os.environ.get("SIGNFLOW_BASE_URL"):
            values["public_base_url"] = os.environ["SIGNFLOW_BASE_URL"]
        return cls(**values)

    def signing_url(self, document_id: str, token: str) -> str:
        """Link handed to the counterparty."""
        base = self.public_base_url.rstrip("/")
        return f"{base}/sign/{document_id}?token={token}"
