"""SMS Service - Twilio Integration for order confirmation codes.
Feature flagged; sends nothing unless SMS_ENABLED and Twilio credentials are set.
"""
from twilio.rest import Client
from twilio.base.exceptions import TwilioRestException
import os
import logging

logger = logging.getLogger(__name__)

# Feature flag for SMS
SMS_ENABLED = os.getenv("SMS_ENABLED", "false").lower() == "true"
DEFAULT_COUNTRY_CODE = os.getenv("SMS_DEFAULT_COUNTRY_CODE", "+91")


def normalize_phone(phone: str) -> str:
    """E.164-ish: keep digits, default the country code for bare 10-digit numbers."""
    phone = (phone or "").strip()
    digits = "".join(c for c in phone if c.isdigit())
    if phone.startswith("+"):
        return f"+{digits}"
    if len(digits) == 10:
        return f"{DEFAULT_COUNTRY_CODE}{digits}"
    return f"+{digits}"


class SMSService:
    def __init__(self):
        self.account_sid = os.getenv("TWILIO_ACCOUNT_SID")
        self.auth_token = os.getenv("TWILIO_AUTH_TOKEN")
        self.from_number = os.getenv("TWILIO_PHONE_NUMBER")
        self.messaging_service_sid = os.getenv("TWILIO_MESSAGING_SERVICE_SID")

        self.client = None
        if self.account_sid and self.auth_token:
            self.client = Client(self.account_sid, self.auth_token)
            logger.info("Twilio client initialized")

    def is_configured(self) -> bool:
        """Check if SMS service is properly configured."""
        return bool(self.client and (self.from_number or self.messaging_service_sid))

    def is_enabled(self) -> bool:
        """Check if SMS feature is enabled."""
        return SMS_ENABLED and self.is_configured()

    async def send_sms(self, to_number: str, message: str) -> dict:
        """Send an SMS message.

        Args:
            to_number: Customer phone number; normalised to E.164
            message: SMS message body

        Returns:
            dict with success and message_sid or error
        """
        if not self.is_enabled():
            logger.warning("SMS is not enabled or configured")
            return {"success": False, "error": "SMS not enabled"}

        to_number = normalize_phone(to_number)
        sender = (
            {"messaging_service_sid": self.messaging_service_sid}
            if self.messaging_service_sid
            else {"from_": self.from_number}
        )

        try:
            message_obj = self.client.messages.create(body=message, to=to_number, **sender)
        except TwilioRestException as e:
            logger.error(f"Twilio error sending SMS: {e.code} - {e.msg}")
            return {"success": False, "error": str(e.msg), "code": e.code}

        logger.info(f"SMS sent to {to_number[:6]}***: {message_obj.sid}")
        return {
            "success": True,
            "message_sid": message_obj.sid,
            "status": message_obj.status,
        }


sms_service = SMSService()
