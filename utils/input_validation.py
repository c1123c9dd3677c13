"""
Input Validation Utilities
Validation of emails, wallet addresses, OTP codes and USDC amounts
"""

import re
import logging
from decimal import Context, Decimal, InvalidOperation, ROUND_FLOOR, localcontext
from typing import Union

from config import Config
from utils.exception_handler import ValidationError

logger = logging.getLogger(__name__)

# Wide enough for any accepted amount at full 10^-8 resolution
AMOUNT_CONTEXT = Context(prec=40)
API_RESOLUTION = Decimal("0.00000001")


class InputValidator:
    """Validation rules shared by every conversation flow"""

    EMAIL_PATTERN = re.compile(Config.EMAIL_REGEX)
    OTP_PATTERN = re.compile(r"^\d{6}$")
    WALLET_ADDRESS_PREFIX = "0x"
    WALLET_ADDRESS_MIN_LENGTH = 42

    @classmethod
    def validate_email(cls, email: str) -> str:
        """Validate email address format"""
        if not email:
            raise ValidationError("Email cannot be empty")

        email = email.strip()
        if not cls.EMAIL_PATTERN.match(email):
            raise ValidationError("Invalid email format. Please enter a valid email address.")
        return email

    @classmethod
    def validate_wallet_address(cls, address: str) -> str:
        """On-chain addresses must start with 0x and be at least 42 characters"""
        if not address:
            raise ValidationError("Address cannot be empty")

        address = address.strip()
        if not address.startswith(cls.WALLET_ADDRESS_PREFIX) or len(address) < cls.WALLET_ADDRESS_MIN_LENGTH:
            raise ValidationError(
                "Invalid wallet address. It must start with 0x and be at least 42 characters long."
            )
        return address

    @classmethod
    def validate_otp(cls, otp: str) -> str:
        if not otp:
            raise ValidationError("Code cannot be empty")

        otp = otp.strip()
        if not cls.OTP_PATTERN.match(otp):
            raise ValidationError("Invalid code. Please enter the 6-digit code from your email.")
        return otp

    @classmethod
    def validate_amount(
        cls, amount_str: str, min_amount: Decimal = Config.MIN_TRANSFER_AMOUNT
    ) -> Decimal:
        """Validate and convert amount to Decimal"""
        if not amount_str:
            raise ValidationError("Amount cannot be empty")

        # Clean input
        amount_str = amount_str.strip().replace(",", "").replace("$", "")

        try:
            amount = Decimal(amount_str)
        except InvalidOperation:
            raise ValidationError("Invalid amount format. Please enter a valid number")

        if not amount.is_finite() or amount <= 0:
            raise ValidationError("Amount must be a positive number")

        check_amount_size(amount)

        if amount < min_amount:
            raise ValidationError(f"Amount must be at least {min_amount} {Config.DEFAULT_CURRENCY}")

        return amount


def check_amount_size(amount: Decimal) -> None:
    """Amounts with more whole digits than the API scale can carry exactly are refused"""
    if amount.adjusted() >= Config.MAX_AMOUNT_INTEGER_DIGITS:
        raise ValidationError("Amount exceeds maximum limit. Please enter a smaller amount")


def to_api_amount(amount: Union[Decimal, str]) -> str:
    """
    Scale a USDC amount to the API's fixed-point string: floor(amount * 10^8).

    Sub-minimum amounts are rejected here as well so no caller can submit them.
    """
    value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    if not value.is_finite() or value < Config.MIN_TRANSFER_AMOUNT:
        raise ValidationError(
            f"Amount must be at least {Config.MIN_TRANSFER_AMOUNT} {Config.DEFAULT_CURRENCY}"
        )
    check_amount_size(value)
    with localcontext(AMOUNT_CONTEXT):
        # floor at the API resolution first so the multiplication is exact
        scaled = value.quantize(API_RESOLUTION, rounding=ROUND_FLOOR) * Config.AMOUNT_SCALE
    return str(int(scaled))


def from_api_amount(raw: Union[str, int, float, None]) -> Decimal:
    """Inverse of ``to_api_amount`` for display; malformed values count as zero"""
    try:
        with localcontext(AMOUNT_CONTEXT):
            return Decimal(str(raw if raw is not None else 0)) / Config.AMOUNT_SCALE
    except InvalidOperation:
        logger.warning(f"Unparseable API amount: {raw!r}")
        return Decimal(0)
