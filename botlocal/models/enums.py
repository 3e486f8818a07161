from enum import Enum


class UnknownPlanError(ValueError):
    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Unknown plan: {key!r}")


class PlanTier(str, Enum):
    STARTER = "starter"
    PRO = "pro"
    ENTERPRISE = "enterprise"

    @classmethod
    def lowest(cls) -> "PlanTier":
        return cls.STARTER

    @classmethod
    def from_key(cls, key: str) -> "PlanTier":
        """Parse a plan key case-insensitively ("PRO", "Starter"). Raises UnknownPlanError."""
        normalized = (key or "").strip().lower()
        for tier in cls:
            if tier.value == normalized:
                return tier
        raise UnknownPlanError(key)


class Platform(str, Enum):
    TELEGRAM = "telegram"
    WHATSAPP = "whatsapp"


class MessageRole(str, Enum):
    CUSTOMER = "customer"
    ASSISTANT = "assistant"


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentEventStatus(str, Enum):
    RECEIVED = "received"
    PROCESSING = "processing"
    PROCESSED = "processed"
    FAILED = "failed"


class NotificationCategory(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    PAYMENT = "payment"


def enum_values(enum_cls) -> list[str]:
    """Column storage uses enum values, not member names."""
    return [member.value for member in enum_cls]
