"""Slack incoming-webhook notifications for operational alerts."""

import enum
import logging
import time
from typing import Optional, Dict, Any, List

import requests
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

SLACK_WEBHOOK_PREFIX = "https://hooks.slack.com/"
REQUEST_TIMEOUT_SECONDS = 10


class Severity(str, enum.Enum):
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"


SEVERITY_COLORS = {
    Severity.CRITICAL: "#ff0000",
    Severity.WARNING: "#ff9900",
    Severity.INFO: "#0099ff",
}

SERVICE_LABELS = {
    "clerk": "Clerk Authentication",
    "stripe": "Stripe Payments",
    "database": "Database",
}

SERVICE_IMPACTS = {
    "clerk": "User authentication broken. Login/signup will fail.",
    "stripe": "Payment processing unavailable. Donations cannot be processed.",
    "database": "Users cannot access data. All database operations will fail.",
}


class SlackField(BaseModel):
    title: str
    value: str
    short: bool = False


class SlackNotification(BaseModel):
    title: str
    message: str
    severity: Severity = Severity.INFO
    fields: List[SlackField] = Field(default_factory=list)


def service_health_check_failed(
    service: str,
    error: str,
    response_time: Optional[str] = None,
) -> SlackNotification:
    name = SERVICE_LABELS.get(service, service)
    return SlackNotification(
        title=f"{name} Health Check Failed",
        message=f"The {name} integration health check has failed. This may impact user functionality.",
        severity=Severity.CRITICAL,
        fields=[
            SlackField(title="Service", value=name, short=True),
            SlackField(title="Response Time", value=response_time or "N/A", short=True),
            SlackField(title="Error", value=error),
            SlackField(title="Impact", value=SERVICE_IMPACTS.get(service, "Unknown")),
        ],
    )


def service_health_check_recovered(
    service: str,
    response_time: Optional[str] = None,
) -> SlackNotification:
    name = SERVICE_LABELS.get(service, service)
    return SlackNotification(
        title=f"{name} Health Check Recovered",
        message=f"The {name} integration has recovered and is now operational.",
        severity=Severity.INFO,
        fields=[
            SlackField(title="Service", value=name, short=True),
            SlackField(title="Response Time", value=response_time or "N/A", short=True),
            SlackField(title="Status", value="Service is now healthy"),
        ],
    )


def cron_job_failed(job_name: str, error: str) -> SlackNotification:
    return SlackNotification(
        title="Cron Job Failed",
        message="A scheduled cron job has failed to complete.",
        severity=Severity.CRITICAL,
        fields=[
            SlackField(title="Job", value=job_name, short=True),
            SlackField(title="Error", value=error),
        ],
    )


class SlackNotifier:
    """Posts notifications to a Slack incoming webhook.

    Sending never raises: a missing or malformed webhook URL skips the
    notification, and delivery failures are logged.
    """

    def __init__(self, webhook_url: Optional[str] = None, session: Optional[requests.Session] = None):
        self.webhook_url = webhook_url
        self._http = session or requests.Session()

    def build_payload(self, notification: SlackNotification, ts: Optional[int] = None) -> Dict[str, Any]:
        attachment: Dict[str, Any] = {
            "color": SEVERITY_COLORS[notification.severity],
            "title": notification.title,
            "text": notification.message,
            "footer": "Church Payouts Monitoring",
            "ts": ts if ts is not None else int(time.time()),
        }
        if notification.fields:
            attachment["fields"] = [f.model_dump() for f in notification.fields]
        return {"attachments": [attachment]}

    def send(self, notification: SlackNotification) -> bool:
        """Send a notification.

        Returns:
            True if Slack accepted the message.
        """
        if not self.webhook_url:
            logger.debug(f"Slack webhook not configured - skipping notification: {notification.title}")
            return False
        if not self.webhook_url.startswith(SLACK_WEBHOOK_PREFIX):
            logger.error(f"Invalid Slack webhook URL format - skipping notification: {notification.title}")
            return False

        try:
            response = self._http.post(
                self.webhook_url,
                json=self.build_payload(notification),
                timeout=REQUEST_TIMEOUT_SECONDS,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            logger.error(f"Failed to send Slack notification '{notification.title}': {e}")
            return False

        logger.debug(f"Slack notification sent: {notification.title}")
        return True
