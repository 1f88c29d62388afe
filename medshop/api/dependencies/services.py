from __future__ import annotations

from fastapi import Request

from medshop.core.errors import AppError
from medshop.services.analytics import AnalyticsService
from medshop.services.auth import AuthService
from medshop.services.categories import CategoryService
from medshop.services.container import ServiceContainer
from medshop.services.customers import CustomerService
from medshop.services.inventory import InventoryService
from medshop.services.orders import OrderService
from medshop.services.payments import PaymentService
from medshop.services.pos import PosService
from medshop.services.products import ProductService
from medshop.services.warehouses import WarehouseService


def get_services(request: Request) -> ServiceContainer:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise AppError("Service unavailable", 503)
    return services


def get_auth_service(request: Request) -> AuthService:
    return get_services(request).auth


def get_product_service(request: Request) -> ProductService:
    return get_services(request).products


def get_category_service(request: Request) -> CategoryService:
    return get_services(request).categories


def get_customer_service(request: Request) -> CustomerService:
    return get_services(request).customers


def get_warehouse_service(request: Request) -> WarehouseService:
    return get_services(request).warehouses


def get_order_service(request: Request) -> OrderService:
    return get_services(request).orders


def get_inventory_service(request: Request) -> InventoryService:
    return get_services(request).inventory


def get_payment_service(request: Request) -> PaymentService:
    return get_services(request).payments


def get_pos_service(request: Request) -> PosService:
    return get_services(request).pos


def get_analytics_service(request: Request) -> AnalyticsService:
    return get_services(request).analytics
