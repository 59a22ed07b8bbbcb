"""
Email Service with SendGrid Integration
Handles payment notifications to customers
"""

import asyncio
from typing import Dict, Optional
import logging
from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail
from jinja2 import Template
from app.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)


class EmailDeliveryError(Exception):
    """Raised when SendGrid does not accept a message"""


class EmailService:
    """Service for handling email operations"""

    def __init__(self, settings: Optional[Settings] = None, client: Optional[SendGridAPIClient] = None):
        self.settings = settings or default_settings
        self.client = client or SendGridAPIClient(self.settings.SENDGRID_API_KEY)
        self.from_email = self.settings.FROM_EMAIL
        self.templates = self._load_templates()

    def _load_templates(self) -> Dict[str, Template]:
        """Load email templates"""
        templates = {
            "payment_confirmation": Template("""
                <!DOCTYPE html>
                <html>
                <head>
                    <style>
                        body { font-family: Arial, sans-serif; line-height: 1.6; }
                        .container { max-width: 600px; margin: 0 auto; padding: 20px; }
                        .header { background: #4CAF50; color: white; padding: 20px; text-align: center; }
                        .content { padding: 20px; background: #f4f4f4; }
                        .receipt { border: 2px dashed #4CAF50; padding: 15px; margin: 20px 0; background: white; }
                        .footer { text-align: center; padding: 20px; color: #666; }
                        .button { display: inline-block; padding: 10px 20px; background: #4CAF50; color: white; text-decoration: none; border-radius: 5px; }
                    </style>
                </head>
                <body>
                    <div class="container">
                        <div class="header">
                            <h1>Payment Received</h1>
                        </div>
                        <div class="content">
                            <h2>Hi {{ user_name }},</h2>
                            <p>Your payment was successful and your booking is confirmed.</p>

                            <div class="receipt">
                                <p><strong>Venue:</strong> {{ venue_name }}</p>
                                <p><strong>Date:</strong> {{ booking_date }}</p>
                                <p><strong>Booking ID:</strong> {{ booking_id }}</p>
                                <p><strong>Amount:</strong> {{ amount }} {{ currency }}</p>
                                <p><strong>Transaction:</strong> {{ transaction_ref }}</p>
                            </div>

                            <center>
                                <a href="{{ booking_url }}" class="button">View Booking</a>
                            </center>
                        </div>
                        <div class="footer">
                            <p>Thank you for booking with Mawid!</p>
                        </div>
                    </div>
                </body>
                </html>
            """),

            "payment_refunded": Template("""
                <!DOCTYPE html>
                <html>
                <body>
                    <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
                        <h2>Refund Processed</h2>
                        <p>Hi {{ user_name }},</p>
                        <p>Your payment for booking {{ booking_id }} has been refunded.</p>

                        <div style="border: 1px solid #ddd; padding: 15px; margin: 20px 0;">
                            <p><strong>Refund Amount:</strong> {{ amount }} {{ currency }}</p>
                            <p><strong>Reason:</strong> {{ reason }}</p>
                        </div>

                        <p>The refund will reach your card within 5-7 business days.</p>
                    </div>
                </body>
                </html>
            """)
        }
        return templates

    def booking_url(self, booking_id) -> str:
        return f"{self.settings.FRONTEND_URL}/bookings/{booking_id}"

    async def send_email(
        self,
        to_email: str,
        subject: str,
        template_name: str,
        context: Dict
    ) -> bool:
        """
        Send an email using SendGrid.

        Raises ``EmailDeliveryError`` when SendGrid rejects the message so the
        caller can retry. Returns False when email is not configured.
        """
        template = self.templates.get(template_name)
        if not template:
            raise KeyError(f"Template {template_name} not found")

        if not self.settings.SENDGRID_API_KEY:
            logger.info(f"SendGrid not configured, skipping '{template_name}' email to {to_email}")
            return False

        html_content = template.render(**context)

        # Create message
        message = Mail(
            from_email=self.from_email,
            to_emails=to_email,
            subject=subject,
            html_content=html_content
        )

        # SendGrid's client is blocking
        response = await asyncio.to_thread(self.client.send, message)

        logger.info(f"Email sent to {to_email}: {response.status_code}")
        if response.status_code not in [200, 201, 202]:
            raise EmailDeliveryError(f"SendGrid returned {response.status_code}")
        return True

    async def send_payment_confirmation(
        self,
        user_email: str,
        user_name: str,
        payment_details: Dict
    ) -> bool:
        """Send payment confirmation email"""
        context = {
            "user_name": user_name,
            "venue_name": payment_details.get("venue_name") or "your venue",
            "booking_date": payment_details.get("booking_date") or "",
            "booking_id": payment_details["booking_id"],
            "amount": payment_details["amount"],
            "currency": payment_details["currency"],
            "transaction_ref": payment_details.get("transaction_ref") or "",
            "booking_url": self.booking_url(payment_details["booking_id"])
        }

        return await self.send_email(
            to_email=user_email,
            subject="Payment Confirmation - Mawid",
            template_name="payment_confirmation",
            context=context
        )

    async def send_refund_notice(
        self,
        user_email: str,
        user_name: str,
        payment_details: Dict
    ) -> bool:
        """Send refund notice email"""
        context = {
            "user_name": user_name,
            "booking_id": payment_details["booking_id"],
            "amount": payment_details["amount"],
            "currency": payment_details["currency"],
            "reason": payment_details.get("reason") or "Booking cancelled"
        }

        return await self.send_email(
            to_email=user_email,
            subject="Refund Processed - Mawid",
            template_name="payment_refunded",
            context=context
        )


# Initialize global email service
email_service = EmailService()
