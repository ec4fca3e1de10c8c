"""
Order confirmation OTP: the customer confirms a drafted order with a code sent by SMS.
- OTP stored as SHA-256 hash: sha256(code + ":" + OTP_PEPPER). Never store raw OTP.
- Phone stored as a hash only; raw numbers never reach the database or the logs.
- One pending code per order; TTL 5 min default, deleted on success or expiry.
- OTP_MOCK_MODE (default on) confirms without checking the code and logs a warning.
"""
import hashlib
import logging
import os
import secrets
from datetime import datetime, timezone, timedelta
from typing import Dict, Optional

from database import database
from services.order_workflow import WorkflowError, InvalidTransitionError, OrderStatus
from services.order_service import get_order, confirm_order
from services.sms_service import sms_service, normalize_phone

logger = logging.getLogger(__name__)

OTP_PEPPER = (os.getenv("OTP_PEPPER") or "").strip()
OTP_TTL_SECONDS = int(os.getenv("OTP_TTL_SECONDS", "300"))
OTP_MAX_ATTEMPTS = int(os.getenv("OTP_MAX_ATTEMPTS", "5"))
OTP_MOCK_MODE = os.getenv("OTP_MOCK_MODE", "true").lower() == "true"

OTP_LENGTH = 6
SMS_ORDER_CONFIRMATION = "Your order {ORDER_ID} confirmation code is {CODE}. It expires in {MINUTES} minutes."

SENDABLE_STATUSES = {OrderStatus.DRAFT.value, OrderStatus.OTP_SENT.value}


class OtpError(WorkflowError):
    """Code missing, expired, exhausted or wrong."""
    pass


class OtpDeliveryError(WorkflowError):
    pass


def _hash(value: str) -> str:
    return hashlib.sha256((value + ":" + OTP_PEPPER).encode()).hexdigest()


def _generate_otp() -> str:
    return "".join(secrets.choice("0123456789") for _ in range(OTP_LENGTH))


async def send_otp(order_id: str, phone: Optional[str] = None) -> Dict:
    """
    Create or replace the order's pending code, text it to the customer and
    move the order to otp_sent.
    The code goes to the phone number on the order; a phone given by the
    caller must be that same number.
    """
    order = await get_order(order_id)
    if order["status"] not in SENDABLE_STATUSES:
        raise InvalidTransitionError(f"Order {order_id} is {order['status']}; no confirmation needed")

    order_phone = normalize_phone(order.get("customer_phone") or "")
    if phone and phone.strip():
        phone = normalize_phone(phone)
        if order_phone and phone != order_phone:
            logger.warning(f"otp_send order={order_id} rejected: phone does not match the order")
            raise OtpError("Phone number does not match the order")
    else:
        phone = order_phone
    if len(phone) < 11:
        raise OtpError("Invalid phone number")

    db = database.get_db()
    now = datetime.now(timezone.utc)
    raw_code = _generate_otp()
    await db.otp_requests.update_one(
        {"order_id": order_id},
        {"$set": {
            "order_id": order_id,
            "code_hash": _hash(raw_code),
            "phone_hash": _hash(phone),
            "attempts": 0,
            "created_at": now,
            "expires_at": now + timedelta(seconds=OTP_TTL_SECONDS),
        }},
        upsert=True,
    )

    minutes = max(1, OTP_TTL_SECONDS // 60)
    body = SMS_ORDER_CONFIRMATION.format(ORDER_ID=order_id, CODE=raw_code, MINUTES=minutes)
    result = await sms_service.send_sms(phone, body)
    if not result.get("success"):
        if not OTP_MOCK_MODE:
            raise OtpDeliveryError(f"Could not send confirmation code: {result.get('error')}")
        logger.warning(f"otp_send order={order_id} SMS not sent ({result.get('error')}); continuing in mock mode")

    await db.orders.update_one(
        {"order_id": order_id, "status": {"$in": sorted(SENDABLE_STATUSES)}},
        {"$set": {"status": OrderStatus.OTP_SENT.value, "updated_at": now}},
    )
    logger.info(f"otp_send order={order_id} phone_hash={_hash(phone)[:16]}")
    return {"order_id": order_id, "status": OrderStatus.OTP_SENT.value, "expires_in": OTP_TTL_SECONDS}


async def verify_otp(order_id: str, code: str = "") -> Dict:
    """
    Check the code and confirm the order (confirmed_locked, first active stage).
    In mock mode the code is not checked.
    """
    db = database.get_db()
    if OTP_MOCK_MODE:
        logger.warning(f"otp_verify order={order_id} bypassed: OTP_MOCK_MODE is on")
        order = await confirm_order(order_id)
        await db.otp_requests.delete_one({"order_id": order_id})
        return order

    code = (code or "").strip()
    if len(code) != OTP_LENGTH or not code.isdigit():
        raise OtpError("Invalid code")

    now = datetime.now(timezone.utc)
    doc = await db.otp_requests.find_one({"order_id": order_id})
    if not doc:
        logger.info(f"otp_verify order={order_id} no_record")
        raise OtpError("No pending code for this order")

    expires_at = doc.get("expires_at")
    if expires_at and expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    if expires_at and expires_at < now:
        await db.otp_requests.delete_one({"order_id": order_id})
        logger.info(f"otp_verify order={order_id} expired")
        raise OtpError("Code expired")

    attempts = doc.get("attempts", 0)
    if attempts >= OTP_MAX_ATTEMPTS:
        logger.warning(f"otp_verify order={order_id} attempts exhausted")
        raise OtpError("Too many attempts")

    if doc.get("code_hash") != _hash(code):
        await db.otp_requests.update_one({"order_id": order_id}, {"$inc": {"attempts": 1}})
        logger.info(f"otp_verify order={order_id} failed attempt_count={attempts + 1}")
        raise OtpError("Incorrect code")

    order = await confirm_order(order_id)
    await db.otp_requests.delete_one({"order_id": order_id})
    logger.info(f"otp_verify order={order_id} success")
    return order
