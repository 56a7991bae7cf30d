"""
Second-factor challenges: TOTP via pyotp, out-of-band codes delivered through
a bounded dispatch queue.
"""

from warden.core.mfa.coordinator import MFAChallengeCoordinator, MFAResult
from warden.core.mfa.delivery import (
    DeliveryChannel,
    DispatchQueue,
    LoggingDeliveryChannel,
    WebhookDeliveryChannel,
    build_delivery_channel,
)

__all__ = [
    "DeliveryChannel",
    "DispatchQueue",
    "LoggingDeliveryChannel",
    "MFAChallengeCoordinator",
    "MFAResult",
    "WebhookDeliveryChannel",
    "build_delivery_channel",
]
