# Overview: Fixed set of module capabilities a user can be granted.
# Each capability is defined as: (code, name, description, category)

from .categories import CapabilityCategory


GENERAL_CAPABILITIES = [
    ("ACCESS_DASHBOARD", "Dashboard", "View the dashboard", CapabilityCategory.GENERAL),
    ("ACCESS_REPORTS", "Reports", "View reports", CapabilityCategory.GENERAL),
]

SALES_CAPABILITIES = [
    ("ACCESS_POS", "Point of Sale", "Ring up sales and collect debt payments", CapabilityCategory.SALES),
    ("ACCESS_DRAWER", "Cash Drawer", "Open and close cash register sessions", CapabilityCategory.SALES),
    (
        "ACCESS_REGISTER_HISTORY",
        "Register History",
        "Browse closed sessions, request amendments, process returns",
        CapabilityCategory.SALES,
    ),
]

INVENTORY_CAPABILITIES = [
    ("ACCESS_INVENTORY", "Inventory", "Inventory overview", CapabilityCategory.INVENTORY),
    ("ACCESS_INVENTORY_ITEMS", "Items", "Create and edit items", CapabilityCategory.INVENTORY),
    ("ACCESS_INVENTORY_CATEGORIES", "Categories", "Manage item categories", CapabilityCategory.INVENTORY),
    (
        "ACCESS_INVENTORY_PURCHASE_ORDERS",
        "Purchase Orders",
        "Create and receive purchase orders",
        CapabilityCategory.INVENTORY,
    ),
    (
        "ACCESS_INVENTORY_STOCK_ADJUSTMENTS",
        "Stock Adjustments",
        "Create and reverse stock adjustments",
        CapabilityCategory.INVENTORY,
    ),
    ("ACCESS_INVENTORY_ASSEMBLY", "Assembly", "Build finished items from parts", CapabilityCategory.INVENTORY),
    ("ACCESS_INVENTORY_SUPPLIERS", "Suppliers", "Manage suppliers", CapabilityCategory.INVENTORY),
    ("ACCESS_INVENTORY_LOG", "Inventory Log", "View stock movement history", CapabilityCategory.INVENTORY),
    ("ACCESS_INVENTORY_WARRANTY", "Warranties", "Look up sold warranties", CapabilityCategory.INVENTORY),
]

CUSTOMER_CAPABILITIES = [
    ("ACCESS_CUSTOMERS", "Customers", "Manage customers and their debt", CapabilityCategory.CUSTOMERS),
]

ADMIN_CAPABILITIES = [
    ("ACCESS_USERS", "Users", "Manage user accounts", CapabilityCategory.ADMINISTRATION),
    ("ACCESS_SETTINGS", "Settings", "Bank accounts and system settings", CapabilityCategory.ADMINISTRATION),
]


CAPABILITY_DEFINITIONS = (
    GENERAL_CAPABILITIES
    + SALES_CAPABILITIES
    + INVENTORY_CAPABILITIES
    + CUSTOMER_CAPABILITIES
    + ADMIN_CAPABILITIES
)
