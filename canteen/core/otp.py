"""
Order Service: Pickup OTP

A 4-digit numeric code handed to the student when the order becomes Ready and
checked by the manager at the counter. Codes are scoped to a single order, so
collisions between orders are irrelevant and not checked.
"""
import secrets

OTP_MIN = 1000
OTP_MAX = 9999


def generate_otp() -> str:
    """Uniformly random code in 1000..9999, string-encoded."""
    return str(OTP_MIN + secrets.randbelow(OTP_MAX - OTP_MIN + 1))
