# Overview: Capability category constants for grouping related back-office modules.


class CapabilityCategory:
    """Capability categories for organization and UI display."""
    GENERAL = "GENERAL"
    SALES = "SALES"
    INVENTORY = "INVENTORY"
    CUSTOMERS = "CUSTOMERS"
    ADMINISTRATION = "ADMINISTRATION"
