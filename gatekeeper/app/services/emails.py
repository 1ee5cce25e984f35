# gatekeeper/app/services/emails.py
"""
Subjects and HTML bodies for every notification the service sends.

Every interpolated value is HTML-escaped.
"""
from datetime import datetime
from html import escape
from typing import Tuple

from gatekeeper.app.schemas.registration import PendingRegistration

Email = Tuple[str, str]


def recovery_code_email(platform: str, username: str, code: str, ttl_minutes: int) -> Email:
    subject = f"Account Recovery - {platform}"
    html = f"""
      <h2>Account Recovery Request</h2>
      <p>Hello {escape(username)},</p>
      <p>We received a request to recover access to your {escape(platform)} account.</p>
      <p>Your recovery code is: <strong>{escape(code)}</strong></p>
      <p>This code will expire in {ttl_minutes} minutes.</p>
      <p>If you did not request this recovery, please contact support immediately.</p>
    """
    return subject, html


def recovery_admin_alert_email(
    platform: str, user_id: str, username: str, email: str, when: datetime
) -> Email:
    subject = f"Recovery Attempt Alert - {platform}"
    html = f"""
      <h2>Account Recovery Attempt</h2>
      <p>A recovery has been initiated on {escape(platform)}.</p>
      <p><strong>User ID:</strong> {escape(user_id)}</p>
      <p><strong>Username:</strong> {escape(username)}</p>
      <p><strong>Email:</strong> {escape(email)}</p>
      <p><strong>Time:</strong> {when.isoformat()}</p>
      <p>If this was not authorized, please secure the account immediately.</p>
    """
    return subject, html


def new_emergency_code_email(platform: str, code: str) -> Email:
    subject = f"New Emergency Access Code - {platform}"
    html = f"""
      <h2>New Emergency Access Code</h2>
      <p>An emergency access code was used on {escape(platform)}.</p>
      <p>Your new emergency access code is: <strong>{escape(code)}</strong></p>
      <p>Store this code securely. The previous code no longer works.</p>
      <p>If you did not perform this emergency access, secure the platform immediately.</p>
    """
    return subject, html


def registration_received_email(platform: str, full_name: str) -> Email:
    subject = f"Registration Request Received - {platform}"
    html = f"""
      <h2>Registration Request Received</h2>
      <p>Hello {escape(full_name)},</p>
      <p>Thank you for your interest in joining {escape(platform)}.</p>
      <p>Your request is pending review by our administrators.
      You will be notified by email once it has been reviewed.</p>
    """
    return subject, html


def registration_admin_notice_email(platform: str, request: PendingRegistration) -> Email:
    subject = f"New Registration Request - {platform}"
    html = f"""
      <h2>New Registration Request</h2>
      <p><strong>Name:</strong> {escape(request.full_name)}</p>
      <p><strong>Email:</strong> {escape(request.email)}</p>
      <p><strong>Reason:</strong> {escape(request.reason)}</p>
      <p><strong>IP Address:</strong> {escape(request.ip_address)}</p>
      <p><strong>Request Date:</strong> {request.request_date.isoformat()}</p>
      <p><strong>Request ID:</strong> {escape(request.id)}</p>
      <p>Please approve or reject this request from the admin dashboard.</p>
    """
    return subject, html


def credentials_email(platform: str, full_name: str, username: str, password: str) -> Email:
    subject = f"Your {platform} Account"
    html = f"""
      <h2>Welcome to {escape(platform)}!</h2>
      <p>Hello {escape(full_name)},</p>
      <p>Your account has been created. Here are your login credentials:</p>
      <p><strong>Username:</strong> {escape(username)}</p>
      <p><strong>Password:</strong> {escape(password)}</p>
      <p>On your first login you will be required to set up two-factor authentication.</p>
      <p>For security reasons, please change your password after your first login.</p>
    """
    return subject, html


def rejection_email(platform: str, full_name: str, reason: str) -> Email:
    subject = f"{platform} Registration Status"
    html = f"""
      <h2>Registration Status Update</h2>
      <p>Hello {escape(full_name)},</p>
      <p>We were unable to approve your registration request at this time.</p>
      <p><strong>Reason:</strong> {escape(reason)}</p>
      <p>If you believe this is an error, please contact our support team.</p>
    """
    return subject, html
