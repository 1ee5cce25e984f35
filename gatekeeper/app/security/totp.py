# gatekeeper/app/security/totp.py
"""
TOTP (Time-based One-Time Password) implementation
RFC 6238 compliant - Compatible with Google Authenticator, Authy, Aegis

Key points:
- 6-digit codes
- 30-second time step
- HMAC-SHA1 (standard)
- Base32 secret encoding
"""
import base64
import io

import pyotp
import qrcode


def generate_totp_secret() -> str:
    """
    Generate a new random TOTP secret (Base32 encoded).
    Returns 32-character Base32 string.
    """
    return pyotp.random_base32()


def get_totp_uri(secret: str, label: str, issuer: str) -> str:
    """
    Generate the otpauth:// URI for QR code encoding.

    Format: otpauth://totp/{issuer}:{label}?secret={secret}&issuer={issuer}
    """
    totp = pyotp.TOTP(secret)
    return totp.provisioning_uri(name=label, issuer_name=issuer)


def generate_qr_code_base64(uri: str) -> str:
    """
    Render an otpauth:// URI as a Base64-encoded PNG QR code.

    Frontend can display this directly using: <img src="data:image/png;base64,{result}">
    """
    qr = qrcode.QRCode(
        version=1,
        error_correction=qrcode.constants.ERROR_CORRECT_L,
        box_size=10,
        border=4,
    )
    qr.add_data(uri)
    qr.make(fit=True)

    img = qr.make_image(fill_color="black", back_color="white")

    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    buffer.seek(0)

    return base64.b64encode(buffer.read()).decode("utf-8")


def verify_totp(secret: str, code: str) -> bool:
    """
    Verify a 6-digit TOTP code.
    Returns True if valid, False otherwise.
    """
    if not secret or not code:
        return False

    code = code.strip().replace(" ", "")
    if len(code) != 6 or not code.isdigit():
        return False

    try:
        totp = pyotp.TOTP(secret)
        return totp.verify(code, valid_window=1)
    except (ValueError, TypeError):
        # Malformed base32 secret
        return False

