from __future__ import annotations

from dataclasses import dataclass

from medshop.core.config import Settings
from medshop.core.database import Database
from medshop.services.analytics import AnalyticsService
from medshop.services.auth import AuthService
from medshop.services.cache import CacheService
from medshop.services.categories import CategoryService
from medshop.services.customers import CustomerService
from medshop.services.inventory import InventoryService
from medshop.services.orders import OrderService
from medshop.services.payments import PaymentService
from medshop.services.pos import PosService
from medshop.services.products import ProductService
from medshop.services.warehouses import WarehouseService


@dataclass
class ServiceContainer:
    """Services built once at startup and shared through ``app.state``."""

    db: Database
    cache: CacheService
    auth: AuthService
    products: ProductService
    categories: CategoryService
    customers: CustomerService
    warehouses: WarehouseService
    orders: OrderService
    inventory: InventoryService
    payments: PaymentService
    pos: PosService
    analytics: AnalyticsService


def build_services(db: Database, cache: CacheService, settings: Settings) -> ServiceContainer:
    orders = OrderService(db, settings)
    return ServiceContainer(
        db=db,
        cache=cache,
        auth=AuthService(db, cache, settings),
        products=ProductService(db, cache),
        categories=CategoryService(db, cache),
        customers=CustomerService(db),
        warehouses=WarehouseService(db),
        orders=orders,
        inventory=InventoryService(db),
        payments=PaymentService(db, settings),
        pos=PosService(db, orders, settings),
        analytics=AnalyticsService(db),
    )
