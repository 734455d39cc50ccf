"""
Subjects and HTML bodies for the success emails.

All customer-supplied values are HTML-escaped before interpolation.
"""
from html import escape
from typing import Tuple

from app.notifications.base import SuccessNotification


def _plan_label(payload: SuccessNotification) -> str:
    return payload.plan or "Custom package"


def render_admin_alert(payload: SuccessNotification, brand: str) -> Tuple[str, str]:
    name = escape(payload.customer_name or "")
    subject = f"New Client Alert: {payload.customer_name} has made a payment!"
    html = f"""
      <div style="font-family: Arial, sans-serif; padding: 20px; color: #333;">
        <h2 style="color: #4a6ee0;">Great news! You have a new client!</h2>
        <p>A customer has just completed a payment on <b>{escape(brand)}</b>.</p>
        <h3 style="margin-top: 20px; border-bottom: 1px solid #eee; padding-bottom: 10px;">Client Details:</h3>
        <ul style="list-style-type: none; padding-left: 0;">
          <li><strong>Name:</strong> {name}</li>
          <li><strong>Email:</strong> {escape(payload.customer_email or "")}</li>
          <li><strong>Phone:</strong> {escape(payload.customer_phone or "Not provided")}</li>
          <li><strong>Transaction ID:</strong> {escape(payload.transaction_id)}</li>
        </ul>
        <h3 style="margin-top: 20px; border-bottom: 1px solid #eee; padding-bottom: 10px;">Purchase Details:</h3>
        <ul style="list-style-type: none; padding-left: 0;">
          <li><strong>Amount Paid:</strong> {escape(payload.currency)} {payload.amount}</li>
          <li><strong>Plan:</strong> {escape(_plan_label(payload))}</li>
          <li><strong>Duration:</strong> {escape(str(payload.duration or ""))} Month(s)</li>
        </ul>
        <div style="margin-top: 30px; padding: 15px; background-color: #f7f7f7; border-radius: 5px;">
          <p style="margin-top: 0;"><strong>Next Steps:</strong></p>
          <ol>
            <li>Reach out to the client within 24 hours to welcome them</li>
            <li>Set up their account with the purchased packages</li>
            <li>Schedule an onboarding call if needed</li>
          </ol>
        </div>
        <p style="margin-top: 30px; font-size: 12px; color: #777;">
          This is an automated message from the {escape(brand)} platform. Please do not reply directly to this email.
        </p>
      </div>
    """
    return subject, html


def render_customer_confirmation(payload: SuccessNotification, brand: str) -> Tuple[str, str]:
    subject = f"Payment received - {brand}"
    html = f"""
      <div style="font-family: Arial, sans-serif; padding: 20px; color: #333;">
        <h2 style="color: #4a6ee0;">Thank you, {escape(payload.customer_name or "")}!</h2>
        <p>We have received your payment. Your order details are below.</p>
        <ul style="list-style-type: none; padding-left: 0;">
          <li><strong>Transaction ID:</strong> {escape(payload.transaction_id)}</li>
          <li><strong>Amount Paid:</strong> {escape(payload.currency)} {payload.amount}</li>
          <li><strong>Plan:</strong> {escape(_plan_label(payload))}</li>
          <li><strong>Duration:</strong> {escape(str(payload.duration or ""))} Month(s)</li>
        </ul>
        <p>Our team will reach out within 24 hours to get you set up.</p>
        <p style="margin-top: 30px; font-size: 12px; color: #777;">
          This is an automated message from {escape(brand)}. Please do not reply directly to this email.
        </p>
      </div>
    """
    return subject, html
