"""
Checkout form validation.

Synchronous, local checks that gate the "continue to payment"
command. Nothing here touches the network.
"""

import re

from app.modules.checkout.errors import FormValidationError
from app.modules.checkout.schemas import Address, CustomerInfo

EMAIL_PATTERN = re.compile(r"\S+@\S+\.\S+")
PHONE_DIGITS = 10

_REQUIRED_CUSTOMER = {
    "first_name": "First name is required",
    "last_name": "Last name is required",
    "phone": "Phone number is required",
}

_REQUIRED_ADDRESS = {
    "street": "Address is required",
    "city": "City is required",
    "state": "State is required",
    "zip_code": "ZIP code is required",
}


def extract_phone_digits(phone: str) -> str:
    """Digits only, at most 10."""
    return re.sub(r"\D", "", phone)[:PHONE_DIGITS]


def format_phone_number(value: str) -> str:
    """Format a phone number as (123) 456-7890 while it is being typed."""
    digits = extract_phone_digits(value)

    if not digits:
        return ""
    if len(digits) <= 3:
        return f"({digits}"
    if len(digits) <= 6:
        return f"({digits[:3]}) {digits[3:]}"
    return f"({digits[:3]}) {digits[3:6]}-{digits[6:]}"


def is_valid_phone_number(phone: str) -> bool:
    return len(re.sub(r"\D", "", phone)) == PHONE_DIGITS


def collect_errors(customer: CustomerInfo, address: Address) -> dict[str, str]:
    """
    Validate checkout form fields.

    Returns:
        Field name to message, empty when the form is valid
    """
    errors: dict[str, str] = {}

    for name, message in _REQUIRED_CUSTOMER.items():
        if not getattr(customer, name).strip():
            errors[name] = message

    if not customer.email.strip():
        errors["email"] = "Email is required"
    elif not EMAIL_PATTERN.search(customer.email):
        errors["email"] = "Email is invalid"

    if "phone" not in errors and not is_valid_phone_number(customer.phone):
        errors["phone"] = "Phone number must have 10 digits"

    for name, message in _REQUIRED_ADDRESS.items():
        if not getattr(address, name).strip():
            errors[name] = message

    return errors


def validate_form(customer: CustomerInfo, address: Address) -> None:
    """
    Raise if the form cannot be submitted.

    Raises:
        FormValidationError: With every invalid field
    """
    errors = collect_errors(customer, address)
    if errors:
        raise FormValidationError(errors)
