"""Time-based one-time passwords (RFC 6238) for two-factor login."""

import pyotp


CODE_DIGITS = 6


class TwoFactorService:
    """Generates TOTP secrets and checks codes against them.

    Args:
        issuer (str): Shown by authenticator apps next to the account name.
        valid_window (int): Accepted clock drift, in 30 second steps either side.
    """

    def __init__(self, issuer: str = "gotchu.lol", valid_window: int = 1):
        self.issuer = issuer
        self.valid_window = valid_window

    def generate_secret(self) -> str:
        return pyotp.random_base32()

    def provisioning_uri(self, secret: str, account_name: str) -> str:
        """`otpauth://` URI, usually rendered as a QR code for authenticator apps."""
        return pyotp.TOTP(secret).provisioning_uri(name=account_name, issuer_name=self.issuer)

    def verify(self, secret: str, code: str) -> bool:
        """False for anything that is not the current (or an adjacent) 6 digit code."""
        if not secret or not code:
            return False

        code = code.strip()
        if len(code) != CODE_DIGITS or not code.isdigit():
            return False

        return pyotp.TOTP(secret).verify(code, valid_window=self.valid_window)
