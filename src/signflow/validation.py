"""Business-rule checks run before an agreement is assembled."""

import logging
from typing import Optional

from .errors import ValidationError
from .models import Agreement

logger = logging.getLogger("signflow.validation")

REQUIRED_FIELDS: tuple[str, ...] = ("title", "client_name", "client_email", "project_name")


def email_domain(email: str) -> str:
    """Lower-cased domain part of an address, or "" if there is none."""
    _, at, domain = email.strip().rpartition("@")
    return domain.lower() if at else ""


class EmailDomainPolicy:
    """Counterparty email must belong to one of the allowed domains.

    Args:
        domains: Allowed domains. Empty means any well-formed address.
    """

    def __init__(self, *domains: str) -> None:
        self.domains = tuple(d.strip().lower().lstrip("@") for d in domains if d.strip())

    def allows(self, email: str) -> bool:
        local, at, domain = email.strip().rpartition("@")
        if not at or not local or not domain:
            return False
        if not self.domains:
            return True
        return domain.lower() in self.domains

    def describe(self) -> str:
        if not self.domains:
            return "a valid email address"
        return " or ".join(f"an @{d} address" for d in self.domains)


def validate_agreement(
    agreement: Agreement,
    policy: Optional[EmailDomainPolicy] = None,
) -> Agreement:
    """Reject agreements that must not be assembled.

    Args:
        agreement: The agreement to check.
        policy: Email domain policy; None accepts any well-formed address.

    Returns:
        The same agreement, for chaining.

    Raises:
        ValidationError: If a required field is blank, the counterparty
            email violates the policy, or the dates are reversed.
    """
    missing = [name for name in REQUIRED_FIELDS if not getattr(agreement, name).strip()]
    if missing:
        raise ValidationError(
            f"Please fill in required fields: {', '.join(missing)}", fields=missing
        )

    policy = policy or EmailDomainPolicy()
    if not policy.allows(agreement.client_email):
        logger.warning("Rejected counterparty email outside policy (%s)", policy.describe())
        raise ValidationError(
            f"Client email must be {policy.describe()} for secure signing.",
            fields=["client_email"],
        )

    if agreement.start_date and agreement.end_date and agreement.end_date < agreement.start_date:
        raise ValidationError(
            "End date must not be before start date.", fields=["start_date", "end_date"]
        )
    return agreement
