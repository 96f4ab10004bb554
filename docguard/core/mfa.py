import base64
import binascii
import hashlib
import io
import secrets
from datetime import datetime

import pyotp
import qrcode


def generate_totp_secret() -> str:
    return pyotp.random_base32()


def totp_from_secret(secret: str, issuer: str) -> pyotp.TOTP:
    return pyotp.TOTP(secret, issuer=issuer)


def verify_otp(secret: str, otp: str, issuer: str, valid_window: int = 1, for_time: datetime | None = None) -> bool:
    if not secret or not otp:
        return False
    otp = otp.strip().replace(" ", "")
    if len(otp) != 6 or not otp.isdigit():
        return False
    totp = totp_from_secret(secret, issuer)
    try:
        # allow small window for clock skew
        return totp.verify(otp, for_time=for_time, valid_window=valid_window)
    except (binascii.Error, ValueError):
        # secret is not valid base32
        return False


def build_otpauth_and_qr(email: str, secret: str, issuer: str) -> tuple[str, str]:
    otpauth_url = totp_from_secret(secret, issuer).provisioning_uri(name=email, issuer_name=issuer)

    qr = qrcode.QRCode(version=1, box_size=10, border=4)
    qr.add_data(otpauth_url)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")

    buf = io.BytesIO()
    img.save(buf, format="PNG")
    encoded = base64.b64encode(buf.getvalue()).decode("ascii")
    return otpauth_url, f"data:image/png;base64,{encoded}"


def generate_backup_codes(count: int) -> list[str]:
    # 8 hex characters each
    return [secrets.token_hex(4).upper() for _ in range(count)]


def hash_backup_code(code: str) -> str:
    return hashlib.sha256(code.strip().upper().encode()).hexdigest()
