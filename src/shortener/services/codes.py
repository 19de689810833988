import re
import secrets
import string
from typing import Iterable, Optional

from pydantic import AnyHttpUrl, TypeAdapter, ValidationError

from src.shortener.core.config import settings
from src.shortener.core.errors import InvalidShortCode, InvalidUrl, InvalidValidity

BASE62_ALPHABET = string.ascii_letters + string.digits
MAX_URL_LENGTH = 2048

_url_adapter = TypeAdapter(AnyHttpUrl)


def generate_short_code(length: int = 6) -> str:
    """
    Generate a random short code of specified length.

    Args:
        length: Length of the short code to generate, defaults to 6

    Returns:
        A random string with mixed case letters and digits
    """
    return "".join(secrets.choice(BASE62_ALPHABET) for _ in range(length))


def validate_url(original_url) -> str:
    """
    Check that a URL is a syntactically valid absolute http(s) URL.

    Args:
        original_url: Candidate URL as supplied by the caller

    Returns:
        The URL with surrounding whitespace removed, otherwise unchanged

    Raises:
        InvalidUrl: If the value is not a string or does not parse
    """
    if not isinstance(original_url, str) or not original_url.strip():
        raise InvalidUrl("URL is required")

    url = original_url.strip()
    if len(url) > MAX_URL_LENGTH:
        raise InvalidUrl(f"URL is too long (max {MAX_URL_LENGTH} characters)")

    try:
        _url_adapter.validate_python(url)
    except ValidationError as e:
        raise InvalidUrl(f"Invalid URL format: {url}") from e

    return url


def validate_validity(
    validity_minutes,
    minimum: Optional[int] = None,
    maximum: Optional[int] = None,
    default: Optional[int] = None,
) -> int:
    """
    Resolve and check a validity period in minutes.

    Omitted values fall back to the configured default.

    Raises:
        InvalidValidity: If the value is not an integer within the bounds
    """
    minimum = settings.MIN_VALIDITY_MINUTES if minimum is None else minimum
    maximum = settings.MAX_VALIDITY_MINUTES if maximum is None else maximum

    if validity_minutes is None:
        validity_minutes = settings.DEFAULT_VALIDITY_MINUTES if default is None else default

    if isinstance(validity_minutes, bool) or not isinstance(validity_minutes, int):
        raise InvalidValidity("Validity must be a whole number of minutes")

    if not minimum <= validity_minutes <= maximum:
        raise InvalidValidity(
            f"Validity must be between {minimum} and {maximum} minutes"
        )
    return validity_minutes


def is_reserved(code: str, reserved: Iterable[str]) -> bool:
    return code.lower() in {word.lower() for word in reserved}


def validate_custom_code(
    code,
    pattern: Optional[str] = None,
    reserved: Optional[Iterable[str]] = None,
) -> str:
    """
    Check a caller-supplied short code.

    Raises:
        InvalidShortCode: If the code does not match the pattern or is a reserved word
    """
    pattern = pattern or settings.CUSTOM_CODE_PATTERN
    reserved = settings.RESERVED_CODES if reserved is None else reserved

    if not isinstance(code, str) or not re.fullmatch(pattern, code):
        raise InvalidShortCode(f"Short code {code!r} does not match {pattern}")

    if is_reserved(code, reserved):
        raise InvalidShortCode(f"'{code}' is a reserved word and cannot be used")

    return code
