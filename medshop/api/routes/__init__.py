from . import (
    analytics,
    auth,
    categories,
    customers,
    guest_orders,
    inventory,
    orders,
    payment,
    pos,
    products,
    warehouses,
)

__all__ = [
    "analytics",
    "auth",
    "categories",
    "customers",
    "guest_orders",
    "inventory",
    "orders",
    "payment",
    "pos",
    "products",
    "warehouses",
]
