"""Service layer helpers"""

from .address import (
    AddressValidation,
    example_address,
    is_valid_address_for_chain,
    validate_address,
)

__all__ = [
    "AddressValidation",
    "example_address",
    "is_valid_address_for_chain",
    "validate_address",
]
