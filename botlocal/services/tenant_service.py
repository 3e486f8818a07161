from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from botlocal.models import Business, Platform

WHATSAPP_PREFIX = "whatsapp:"


def normalize_whatsapp_phone(raw: Optional[str]) -> Optional[str]:
    if not raw:
        return None
    phone = raw.strip()
    if phone.lower().startswith(WHATSAPP_PREFIX):
        phone = phone[len(WHATSAPP_PREFIX):]
    return phone or None


def resolve(db: Session, platform: Platform, credential: Optional[str]) -> Optional[Business]:
    """Find the business owning a chat credential (bot token or destination phone)."""
    if not credential:
        return None
    if platform == Platform.TELEGRAM:
        return db.query(Business).filter(Business.telegram_bot_token == credential).first()
    phone = normalize_whatsapp_phone(credential)
    if not phone:
        return None
    return db.query(Business).filter(Business.whatsapp_phone == phone).first()


def by_id(db: Session, business_id) -> Optional[Business]:
    if not business_id:
        return None
    try:
        key = business_id if isinstance(business_id, UUID) else UUID(str(business_id))
    except ValueError:
        return None
    return db.get(Business, key)


def by_payment_customer(db: Session, customer_id: Optional[str]) -> Optional[Business]:
    if not customer_id:
        return None
    return db.query(Business).filter(Business.stripe_customer_id == customer_id).first()
