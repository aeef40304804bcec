"""
Automation handlers.

Each automation type is executed by a handler registered under that type.
The execution engine only relies on the uniform contract: `execute()`
returns a JSON-serializable payload on success and raises on failure.
New action kinds are added by registering a handler, without touching the
engine.
"""

import uuid
from dataclasses import dataclass, field
from typing import Any, Protocol

from crmflow.config import get_config
from crmflow.core.datetime_utils import utc_now
from crmflow.core.logging import get_logger
from crmflow.models.automation import Automation, AutomationType, RecipientType
from crmflow.services.email_service import send_automation_email

logger = get_logger(__name__)


class HandlerError(Exception):
    """Raised by a handler when the action could not be carried out."""


@dataclass(frozen=True)
class Recipient:
    """Recipient passed to handlers, detached from the ORM."""

    email: str
    name: str | None = None
    recipient_type: RecipientType = RecipientType.CUSTOM


@dataclass(frozen=True)
class ActingUser:
    """Owner of the automation, on whose behalf the handler acts."""

    id: uuid.UUID
    email: str
    name: str


@dataclass(frozen=True)
class HandlerRequest:
    """Everything a handler receives for one dispatch."""

    automation_id: uuid.UUID
    automation_type: AutomationType
    config: dict[str, Any]
    recipients: list[Recipient] = field(default_factory=list)
    acting_user: ActingUser | None = None

    @classmethod
    def from_automation(cls, automation: Automation) -> "HandlerRequest":
        owner = automation.user
        return cls(
            automation_id=automation.id,
            automation_type=automation.type,
            config=dict(automation.config or {}),
            recipients=[
                Recipient(email=r.email, name=r.name, recipient_type=r.recipient_type)
                for r in automation.recipients
            ],
            acting_user=ActingUser(id=owner.id, email=owner.email, name=owner.display_name)
            if owner is not None
            else None,
        )


class AutomationHandler(Protocol):
    """Protocol for automation handlers."""

    automation_type: AutomationType

    async def execute(
        self,
        config: dict[str, Any],
        recipients: list[Recipient],
        acting_user: ActingUser | None,
    ) -> dict[str, Any]:
        """Carry out the action and return an opaque result payload."""
        ...


class EmailReminderHandler:
    """Send the configured reminder to every recipient through Resend."""

    automation_type = AutomationType.EMAIL_REMINDER

    async def execute(
        self,
        config: dict[str, Any],
        recipients: list[Recipient],
        acting_user: ActingUser | None,
    ) -> dict[str, Any]:
        email_config = get_config().email
        subject = config.get("subject") or email_config.default_subject
        message = config.get("message") or email_config.default_message

        details: list[dict[str, Any]] = []
        for recipient in recipients:
            try:
                email_id = await send_automation_email(
                    email=recipient.email,
                    subject=subject,
                    message=message,
                    to_name=recipient.name,
                    sender_name=acting_user.name if acting_user else None,
                )
                details.append(
                    {
                        "email": recipient.email,
                        "status": "sent",
                        "email_id": email_id,
                        "timestamp": utc_now().isoformat(),
                    }
                )
            except Exception as e:
                logger.bind(email=recipient.email, error=str(e)).error("automation_email_failed")
                details.append(
                    {
                        "email": recipient.email,
                        "status": "failed",
                        "error": str(e),
                        "timestamp": utc_now().isoformat(),
                    }
                )

        sent = sum(1 for d in details if d["status"] == "sent")
        failed = len(details) - sent
        if details and sent == 0:
            raise HandlerError(f"All {failed} reminder email(s) failed: {details[0]['error']}")

        return {
            "type": self.automation_type.value,
            "emails_sent": sent,
            "emails_failed": failed,
            "details": details,
        }


class AcknowledgeHandler:
    """Record the dispatch of an action carried out by another service.

    Task creation, archiving, reports and the other non-email actions are
    performed by the CRM's own services; the scheduler acknowledges the
    occurrence and reports what was requested.
    """

    def __init__(self, automation_type: AutomationType, description: str) -> None:
        self.automation_type = automation_type
        self.description = description

    async def execute(
        self,
        config: dict[str, Any],
        recipients: list[Recipient],
        acting_user: ActingUser | None,
    ) -> dict[str, Any]:
        logger.bind(
            automation_type=self.automation_type.value,
            recipients=len(recipients),
            user=acting_user.email if acting_user else None,
        ).info("automation_action_acknowledged")
        return {
            "type": self.automation_type.value,
            "message": self.description,
            "recipients": [r.email for r in recipients],
            "config_keys": sorted(config),
        }


class HandlerRegistry:
    """Registry for automation handlers."""

    def __init__(self) -> None:
        self._handlers: dict[AutomationType, AutomationHandler] = {}

    def register(self, handler: AutomationHandler) -> None:
        """Register a handler, replacing any handler of the same type."""
        self._handlers[handler.automation_type] = handler

    def get(self, automation_type: AutomationType) -> AutomationHandler | None:
        """Get the handler for an automation type."""
        return self._handlers.get(automation_type)

    def list_available(self) -> list[str]:
        """List the automation types that have a handler."""
        return [t.value for t in self._handlers]


_ACKNOWLEDGED_ACTIONS: dict[AutomationType, str] = {
    AutomationType.TASK_CREATION: "Task creation requested",
    AutomationType.STATUS_UPDATE: "Status update requested",
    AutomationType.REPORT_GENERATION: "Report generation requested",
    AutomationType.CLIENT_FOLLOW_UP: "Client follow-up requested",
    AutomationType.INVOICE_REMINDER: "Invoice reminder requested",
    AutomationType.BACKUP_DATA: "Data backup requested",
    AutomationType.NOTIFICATION_SEND: "Notification requested",
    AutomationType.PROJECT_ARCHIVE: "Project archive requested",
    AutomationType.CLIENT_CHECK_IN: "Client check-in requested",
    AutomationType.DEADLINE_ALERT: "Deadline alert requested",
    AutomationType.WEEKLY_SUMMARY: "Weekly summary requested",
}


def build_default_registry() -> HandlerRegistry:
    """Registry with a handler for every automation type."""
    registry = HandlerRegistry()
    registry.register(EmailReminderHandler())
    for automation_type, description in _ACKNOWLEDGED_ACTIONS.items():
        registry.register(AcknowledgeHandler(automation_type, description))
    return registry


# Global registry with default handlers
_registry = build_default_registry()


def get_registry() -> HandlerRegistry:
    """Get the global handler registry."""
    return _registry
