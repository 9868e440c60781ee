"""
Notification Module

Best-effort delivery of payment and overdue notices to credit holders.
Delivery failures are logged and recorded, never raised into the financial
flow that triggered them.
"""

from datetime import datetime, timezone
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any
from enum import Enum
from email.mime.text import MIMEText
import logging
import smtplib
import uuid
import requests
from abc import ABC, abstractmethod

from .storage import StorageInterface, StorageRecord

logger = logging.getLogger("credit_core.notifications")


class NotificationType(Enum):
    """Types of payment notifications"""
    PAYMENT_RECEIVED = "payment_received"
    PAYMENT_OVERDUE = "payment_overdue"


class NotificationStatus(Enum):
    """Delivery outcome"""
    SENT = "sent"
    FAILED = "failed"


SUBJECTS = {
    NotificationType.PAYMENT_RECEIVED: "Payment received",
    NotificationType.PAYMENT_OVERDUE: "Payment overdue",
}


@dataclass
class PaymentNotification:
    """Message about one installment of one credit"""
    email: str
    notification_type: NotificationType
    amount: float
    credit_id: Optional[str] = None
    payment_number: Optional[int] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def subject(self) -> str:
        return f"Payment notification - {SUBJECTS[self.notification_type]}"

    def html_body(self) -> str:
        return (
            "<h1>Payment notification</h1>\n"
            f"<p>Payment type: {SUBJECTS[self.notification_type]}</p>\n"
            f"<p>Amount: {self.amount:.2f}</p>\n"
            f"<p>Date: {self.timestamp.strftime('%d.%m.%Y %H:%M:%S')}</p>\n"
        )


@dataclass
class NotificationRecord(StorageRecord):
    """Delivery log entry"""
    notification_type: NotificationType
    recipient: str
    amount: float
    status: NotificationStatus
    credit_id: Optional[str] = None
    payment_number: Optional[int] = None
    failed_reason: Optional[str] = None


class Notifier(ABC):
    """Abstract base class for notification channels"""

    @abstractmethod
    def send(self, notification: PaymentNotification) -> bool:
        """Send notification via this channel. Returns True if successful."""
        pass


class LogNotifier(Notifier):
    """Writes notifications to the application log instead of sending them"""

    def send(self, notification: PaymentNotification) -> bool:
        logger.info(
            f"EMAIL to {notification.email}: {notification.subject} | "
            f"amount {notification.amount:.2f}"
        )
        return True


class EmailNotifier(Notifier):
    """HTML e-mail over SMTP"""

    def __init__(
        self,
        host: str,
        port: int,
        username: str = "",
        password: str = "",
        sender: str = "noreply@credit-core.local",
        use_tls: bool = True,
        timeout: float = 10.0
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.sender = sender
        self.use_tls = use_tls
        self.timeout = timeout

    def send(self, notification: PaymentNotification) -> bool:
        message = MIMEText(notification.html_body(), "html", "utf-8")
        message["Subject"] = notification.subject
        message["From"] = self.sender
        message["To"] = notification.email

        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
            if self.use_tls:
                smtp.starttls()
            if self.username:
                smtp.login(self.username, self.password)
            smtp.sendmail(self.sender, [notification.email], message.as_string())
        return True


class WebhookNotifier(Notifier):
    """Webhook channel for external integrations"""

    def __init__(self, url: str, timeout: float = 10.0):
        self.url = url
        self.timeout = timeout

    def send(self, notification: PaymentNotification) -> bool:
        """Send notification via webhook POST"""
        payload = {
            "type": notification.notification_type.value,
            "email": notification.email,
            "subject": notification.subject,
            "amount": notification.amount,
            "credit_id": notification.credit_id,
            "payment_number": notification.payment_number,
            "timestamp": notification.timestamp.isoformat()
        }

        response = requests.post(
            self.url,
            json=payload,
            timeout=self.timeout,
            headers={"Content-Type": "application/json"}
        )
        return response.status_code in (200, 201, 202, 204)


class NotificationDispatcher:
    """
    Fire-and-forget front for a Notifier.

    ``notify`` never raises: a failed or rejected delivery is logged as a
    warning and, when storage is given, recorded with status FAILED.
    """

    def __init__(self, notifier: Notifier, storage: Optional[StorageInterface] = None):
        self.notifier = notifier
        self.storage = storage
        self.table_name = "notifications"

    def notify(self, notification: PaymentNotification) -> bool:
        failed_reason = None
        try:
            delivered = self.notifier.send(notification)
            if not delivered:
                failed_reason = "rejected by channel"
        except Exception as e:
            delivered = False
            failed_reason = str(e)

        if delivered:
            logger.info(f"{notification.notification_type.value} notification sent to {notification.email}")
        else:
            logger.warning(
                f"Failed to send {notification.notification_type.value} notification "
                f"to {notification.email}: {failed_reason}"
            )

        self._record(notification, delivered, failed_reason)
        return delivered

    def _record(self, notification: PaymentNotification, delivered: bool,
                failed_reason: Optional[str]) -> None:
        if self.storage is None:
            return

        now = datetime.now(timezone.utc)
        record = NotificationRecord(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            notification_type=notification.notification_type,
            recipient=notification.email,
            amount=notification.amount,
            status=NotificationStatus.SENT if delivered else NotificationStatus.FAILED,
            credit_id=notification.credit_id,
            payment_number=notification.payment_number,
            failed_reason=failed_reason
        )
        try:
            self.storage.save(self.table_name, record.id, record.to_dict())
        except Exception as e:
            logger.warning(f"Could not record notification delivery: {e}")

    def get_notifications(self, credit_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """Delivery log, optionally for one credit"""
        if self.storage is None:
            return []
        filters = {"credit_id": credit_id} if credit_id else {}
        return self.storage.find(self.table_name, filters)
