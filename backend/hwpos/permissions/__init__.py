# Overview: Capability system package.

from .categories import CapabilityCategory
from .definitions import (
    CAPABILITY_DEFINITIONS,
    GENERAL_CAPABILITIES,
    SALES_CAPABILITIES,
    INVENTORY_CAPABILITIES,
    CUSTOMER_CAPABILITIES,
    ADMIN_CAPABILITIES,
)
from .helpers import (
    ALL_CAPABILITY_CODES,
    get_all_capability_codes,
    get_capabilities_by_category,
    get_capability_definition,
    validate_capability_code,
)

__all__ = [
    "CapabilityCategory",
    "CAPABILITY_DEFINITIONS",
    "GENERAL_CAPABILITIES",
    "SALES_CAPABILITIES",
    "INVENTORY_CAPABILITIES",
    "CUSTOMER_CAPABILITIES",
    "ADMIN_CAPABILITIES",
    "ALL_CAPABILITY_CODES",
    "get_all_capability_codes",
    "get_capabilities_by_category",
    "get_capability_definition",
    "validate_capability_code",
]
