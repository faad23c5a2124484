"""
Shared test utilities, entities and factories.

Re-exports everything for convenient imports:
    from repoquery.testing import Order, create_order
"""

from repoquery.testing.factories import (
    create_category,
    create_customer,
    create_invoice,
    create_order,
    create_order_line,
    create_tag,
)
from repoquery.testing.models import Category, Customer, Invoice, Order, OrderLine, OrderTag, Tag

__all__ = [
    "Category",
    "Customer",
    "Invoice",
    "Order",
    "OrderLine",
    "OrderTag",
    "Tag",
    "create_category",
    "create_customer",
    "create_invoice",
    "create_order",
    "create_order_line",
    "create_tag",
]
