"""Application services: use case orchestration."""

from pay2start.services.contract_service import ContractService
from pay2start.services.notification_service import NotificationService
from pay2start.services.payment_service import PaymentGateway
from pay2start.services.signing_service import SigningService
from pay2start.services.void_service import VoidService
from pay2start.services.webhook_service import WebhookService

__all__ = [
    "ContractService",
    "NotificationService",
    "PaymentGateway",
    "SigningService",
    "VoidService",
    "WebhookService",
]
