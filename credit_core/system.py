"""
Credit system wiring: builds every component from configuration.
"""

from typing import Optional

from .config import CreditCoreConfig, get_config
from .storage import StorageInterface, create_storage
from .audit import AuditTrail
from .transactions import TransactionLog
from .accounts import AccountLedger
from .users import UserDirectory
from .rates import RateSource, StaticRateSource, KeyRateClient
from .notifications import NotificationDispatcher, Notifier, LogNotifier, EmailNotifier, WebhookNotifier
from .credits import CreditManager
from .scheduler import PaymentScheduler


class CreditSystem:
    """Credit core with all components initialized"""

    def __init__(
        self,
        config: Optional[CreditCoreConfig] = None,
        storage: Optional[StorageInterface] = None,
        rate_source: Optional[RateSource] = None,
        notifier: Optional[Notifier] = None
    ):
        self.config = config or get_config()

        self.storage = storage or create_storage(self.config.database_url)
        self.audit_trail = AuditTrail(self.storage)
        self.transaction_log = TransactionLog(self.storage, self.audit_trail)
        self.account_ledger = AccountLedger(self.storage, self.audit_trail, self.transaction_log)
        self.users = UserDirectory(self.storage, self.audit_trail)

        self.rate_source = rate_source or self._create_rate_source()
        self.dispatcher = NotificationDispatcher(notifier or self._create_notifier(), self.storage)

        self.credit_manager = CreditManager(
            self.storage, self.account_ledger, self.transaction_log,
            self.rate_source, self.audit_trail,
            rate_margin=self.config.rate_margin,
            penalty_rate=self.config.penalty_rate
        )
        self.scheduler = PaymentScheduler(
            self.credit_manager, self.account_ledger, self.users,
            self.dispatcher, self.audit_trail,
            interval_hours=self.config.scheduler_interval_hours
        )

    def _create_rate_source(self) -> RateSource:
        """Create the benchmark rate source based on configuration"""
        if self.config.rate_source == "cbr":
            return KeyRateClient(
                url=self.config.rate_source_url,
                timeout=self.config.rate_source_timeout,
                lookback_days=self.config.rate_lookback_days
            )
        if self.config.rate_source == "static":
            return StaticRateSource(self.config.static_benchmark_rate)
        raise ValueError(f"Unknown rate source: {self.config.rate_source}")

    def _create_notifier(self) -> Notifier:
        """Create the notification channel based on configuration"""
        channel = self.config.notification_channel
        if channel == "email":
            return EmailNotifier(
                host=self.config.smtp_host,
                port=self.config.smtp_port,
                username=self.config.smtp_username,
                password=self.config.smtp_password,
                sender=self.config.email_from,
                use_tls=self.config.smtp_use_tls,
                timeout=self.config.notification_timeout
            )
        if channel == "webhook":
            if not self.config.webhook_url:
                raise ValueError("webhook_url is required for the webhook notification channel")
            return WebhookNotifier(self.config.webhook_url, timeout=self.config.notification_timeout)
        if channel == "log":
            return LogNotifier()
        raise ValueError(f"Unknown notification channel: {channel}")

    def start(self) -> None:
        if self.config.scheduler_enabled:
            self.scheduler.start()

    def shutdown(self) -> None:
        self.scheduler.stop(timeout=self.config.scheduler_stop_timeout)
        if isinstance(self.rate_source, KeyRateClient):
            self.rate_source.close()
        self.storage.close()
