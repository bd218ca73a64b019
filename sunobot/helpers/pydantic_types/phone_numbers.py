from pydantic import TypeAdapter
from pydantic_extra_types.phone_numbers import PhoneNumber as PydanticPhoneNumber


class PhoneNumber(PydanticPhoneNumber):
    phone_format = "E164"  # Format expected by Twilio


def to_phone_number(value: str) -> PhoneNumber:
    """
    Validate a raw string as a phone number.

    Raises a `ValidationError` if the value is not a phone number.
    """
    return TypeAdapter(PhoneNumber).validate_python(value)
