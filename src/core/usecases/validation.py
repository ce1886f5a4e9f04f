"""Request validation ahead of the delivery pipeline."""

import json
import logging
from dataclasses import dataclass
from typing import List

from email_validator import EmailNotValidError, validate_email

from src.core.entities import EmailRequest, PushRequest
from src.core.exceptions import ValidationError

logger = logging.getLogger(__name__)

MB = 1024 * 1024


@dataclass(frozen=True)
class EmailValidationLimits:
    enabled: bool = True
    max_recipients: int = 50
    max_cc_recipients: int = 20
    max_bcc_recipients: int = 50
    max_attachments: int = 10
    max_attachment_size_mb: int = 10
    max_total_attachment_size_mb: int = 25
    max_body_size_kb: int = 500


@dataclass(frozen=True)
class PushValidationLimits:
    enabled: bool = True
    max_title_length: int = 65
    max_body_length: int = 240
    max_data_payload_kb: int = 4


class EmailValidationService:
    """Validates email requests against the configured limits."""

    def __init__(self, limits: EmailValidationLimits = EmailValidationLimits()):
        self.limits = limits

    def validate_email_request(self, request: EmailRequest) -> None:
        """
        Validate an email request.

        Args:
            request: Email to validate

        Raises:
            ValidationError: Listing every problem found
        """
        if not self.limits.enabled:
            return

        logger.debug(f"Validating email request for: {request.to}")

        errors: List[str] = []
        errors.extend(self._validate_recipients(request))
        errors.extend(self._validate_attachments(request))

        if not request.subject or not request.subject.strip():
            errors.append("Subject is required")
        if request.body and len(request.body.encode("utf-8")) // 1024 > self.limits.max_body_size_kb:
            errors.append(f"Email body exceeds maximum size of {self.limits.max_body_size_kb}KB")

        if errors:
            raise ValidationError(errors)

    def _validate_recipients(self, request: EmailRequest) -> List[str]:
        errors = []
        if not request.to:
            return ["At least one recipient is required"]

        if len(request.to) > self.limits.max_recipients:
            errors.append(f"Maximum {self.limits.max_recipients} recipients allowed")
        if len(request.cc) > self.limits.max_cc_recipients:
            errors.append(f"Maximum {self.limits.max_cc_recipients} CC recipients allowed")
        if len(request.bcc) > self.limits.max_bcc_recipients:
            errors.append(f"Maximum {self.limits.max_bcc_recipients} BCC recipients allowed")

        for address in request.all_recipients:
            try:
                validate_email(address, check_deliverability=False)
            except EmailNotValidError:
                errors.append(f"Invalid email format: {address}")
        return errors

    def _validate_attachments(self, request: EmailRequest) -> List[str]:
        if not request.attachments:
            return []

        errors = []
        if len(request.attachments) > self.limits.max_attachments:
            errors.append(f"Maximum {self.limits.max_attachments} attachments allowed")

        total_size = 0
        for attachment in request.attachments:
            if attachment.size // MB > self.limits.max_attachment_size_mb:
                errors.append(
                    f"Attachment {attachment.filename} exceeds maximum size of "
                    f"{self.limits.max_attachment_size_mb}MB"
                )
            total_size += attachment.size

        if total_size // MB > self.limits.max_total_attachment_size_mb:
            errors.append(
                f"Total attachments size exceeds maximum of {self.limits.max_total_attachment_size_mb}MB"
            )
        return errors


class PushValidationService:
    """Validates push requests against the configured limits."""

    def __init__(self, limits: PushValidationLimits = PushValidationLimits()):
        self.limits = limits

    def validate_send_request(self, request: PushRequest) -> None:
        """
        Validate a push request.

        Raises:
            ValidationError: Listing every problem found
        """
        if not self.limits.enabled:
            return

        logger.debug("Validating push notification request")

        errors: List[str] = []
        if not request.device_token and not request.user_id:
            errors.append("Either device token or user ID must be provided")

        if not request.title or not request.title.strip():
            errors.append("Title is required")
        elif len(request.title) > self.limits.max_title_length:
            errors.append(f"Title exceeds maximum length of {self.limits.max_title_length}")

        if not request.body or not request.body.strip():
            errors.append("Body is required")
        elif len(request.body) > self.limits.max_body_length:
            errors.append(f"Body exceeds maximum length of {self.limits.max_body_length}")

        if request.data:
            payload_size = len(json.dumps(request.data).encode("utf-8"))
            if payload_size // 1024 > self.limits.max_data_payload_kb:
                errors.append(
                    f"Data payload exceeds maximum size of {self.limits.max_data_payload_kb}KB"
                )

        if errors:
            raise ValidationError(errors)
