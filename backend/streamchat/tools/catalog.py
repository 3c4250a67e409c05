"""Product catalog and sales history, queried by the model through tools."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

import structlog
from sqlalchemy import DateTime, Float, ForeignKey, Integer, String, Text, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from streamchat.core.exceptions import PersistenceError, ToolError
from streamchat.session.types import utcnow
from streamchat.tools.base import BaseTool, require_text

logger = structlog.get_logger()

MAX_PRODUCT_MATCHES = 5


class CatalogBase(DeclarativeBase):
    """Base class for catalog models."""

    pass


class Product(CatalogBase):
    """Product row with price and stock."""

    __tablename__ = "products"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), index=True)
    price: Mapped[float] = mapped_column(Float)
    stock: Mapped[int] = mapped_column(Integer, default=0)
    description: Mapped[str] = mapped_column(Text, default="")

    def to_record(self) -> ProductRecord:
        return ProductRecord(
            id=self.id,
            name=self.name,
            price=self.price,
            stock=self.stock,
            description=self.description or "",
        )


class Sale(CatalogBase):
    """One sale of a product."""

    __tablename__ = "sales"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    product_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("products.id", ondelete="CASCADE"), index=True
    )
    sale_date: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    quantity_sold: Mapped[int] = mapped_column(Integer)
    total_price: Mapped[float] = mapped_column(Float)

    def to_record(self) -> SaleRecord:
        return SaleRecord(
            sale_date=self.sale_date,
            quantity_sold=self.quantity_sold,
            total_price=self.total_price,
        )


@dataclass
class ProductRecord:
    id: int
    name: str
    price: float
    stock: int
    description: str = ""


@dataclass
class SaleRecord:
    sale_date: datetime
    quantity_sold: int
    total_price: float


def _name_pattern(name: str) -> str:
    escaped = name.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class CatalogStore:
    """Read-mostly access to the ``products`` and ``sales`` tables.

    Shares the engine of the history store; every call checks out its own
    database session. Driver failures are raised as ``PersistenceError``.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        engine: Optional[AsyncEngine] = None,
    ) -> None:
        self.session_factory = session_factory
        self.engine = engine

    async def initialize(self) -> None:
        """Create the catalog tables if needed."""
        if self.engine is None:
            return
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(CatalogBase.metadata.create_all)
        except (SQLAlchemyError, OSError) as e:
            raise PersistenceError(f"Failed to initialize catalog: {e}", operation="initialize_catalog") from e

    async def add_product(
        self,
        name: str,
        price: float,
        stock: int = 0,
        description: str = "",
    ) -> ProductRecord:
        """Insert a product."""
        try:
            async with self.session_factory() as db:
                row = Product(name=name, price=price, stock=stock, description=description)
                db.add(row)
                await db.commit()
                return row.to_record()
        except (SQLAlchemyError, OSError) as e:
            raise PersistenceError(f"Failed to add product: {e}", operation="add_product") from e

    async def record_sale(
        self,
        product_id: int,
        quantity_sold: int,
        total_price: float,
        sale_date: Optional[datetime] = None,
    ) -> SaleRecord:
        """Insert a sale of a product."""
        try:
            async with self.session_factory() as db:
                row = Sale(
                    product_id=product_id,
                    quantity_sold=quantity_sold,
                    total_price=total_price,
                    sale_date=sale_date or utcnow(),
                )
                db.add(row)
                await db.commit()
                return row.to_record()
        except (SQLAlchemyError, OSError) as e:
            raise PersistenceError(f"Failed to record sale: {e}", operation="record_sale") from e

    async def find_products(self, name: str, limit: int = MAX_PRODUCT_MATCHES) -> List[ProductRecord]:
        """Products whose name contains ``name`` (case-insensitive), closest first."""
        try:
            async with self.session_factory() as db:
                result = await db.execute(
                    select(Product)
                    .where(Product.name.ilike(_name_pattern(name), escape="\\"))
                    .order_by(func.length(Product.name), Product.name)
                    .limit(limit)
                )
                return [row.to_record() for row in result.scalars().all()]
        except (SQLAlchemyError, OSError) as e:
            raise PersistenceError(f"Failed to search products: {e}", operation="find_products") from e

    async def sales_for(self, name: str) -> Tuple[Optional[ProductRecord], List[SaleRecord]]:
        """Sales of the closest product matching ``name``, oldest first."""
        matches = await self.find_products(name, limit=1)
        if not matches:
            return None, []

        product = matches[0]
        try:
            async with self.session_factory() as db:
                result = await db.execute(
                    select(Sale)
                    .where(Sale.product_id == product.id)
                    .order_by(Sale.sale_date, Sale.id)
                )
                return product, [row.to_record() for row in result.scalars().all()]
        except (SQLAlchemyError, OSError) as e:
            raise PersistenceError(f"Failed to load sales: {e}", operation="sales_for") from e


def _money(value: float) -> str:
    return f"{value:,.2f}"


def format_products(query: str, products: Sequence[ProductRecord]) -> str:
    """One product as a list, several as a Markdown table."""
    if len(products) == 1:
        product = products[0]
        return (
            f'Product "{product.name}":\n'
            f"- Price: {_money(product.price)}\n"
            f"- In stock: {product.stock} units\n"
            f"- Description: {product.description}"
        )

    rows = "\n".join(
        f"| {p.name} | {_money(p.price)} | {p.stock} | {p.description} |" for p in products
    )
    return (
        f'Found {len(products)} products matching "{query}":\n\n'
        "| Product | Price | Stock | Description |\n"
        "|---------|-------|-------|-------------|\n"
        f"{rows}"
    )


def format_sales(product_name: str, sales: Sequence[SaleRecord]) -> str:
    """One sale as a list, several as a Markdown table with totals."""
    if len(sales) == 1:
        sale = sales[0]
        return (
            f'Sales history of "{product_name}":\n'
            f"- Date: {sale.sale_date.date().isoformat()}\n"
            f"- Quantity sold: {sale.quantity_sold} units\n"
            f"- Revenue: {_money(sale.total_price)}"
        )

    rows = "\n".join(
        f"| {s.sale_date.date().isoformat()} | {s.quantity_sold} | {_money(s.total_price)} |"
        for s in sales
    )
    total_quantity = sum(s.quantity_sold for s in sales)
    total_revenue = sum(s.total_price for s in sales)
    return (
        f'Sales history of "{product_name}", {len(sales)} sales:\n\n'
        "| Date | Quantity sold | Revenue |\n"
        "|------|---------------|---------|\n"
        f"{rows}\n\n"
        "**Totals:**\n"
        f"- Units sold: {total_quantity}\n"
        f"- Revenue: {_money(total_revenue)}"
    )


_PRODUCT_NAME_SCHEMA = {
    "type": "string",
    "description": "Product name or part of it, e.g. 'MacBook Pro M3', 'iPhone', 'iPad'",
}


class GetProductInfoTool(BaseTool):
    """Price, stock and description lookup by product name."""

    name = "get_product_info"
    description = (
        "Look up products in the database by name, including price and the "
        "number of units in stock."
    )
    parameters = {
        "type": "object",
        "properties": {"productName": _PRODUCT_NAME_SCHEMA},
        "required": ["productName"],
    }

    def __init__(self, catalog: CatalogStore) -> None:
        self.catalog = catalog

    async def execute(self, arguments: Dict[str, Any]) -> str:
        product_name = require_text(arguments, "productName", self.name)
        try:
            products = await self.catalog.find_products(product_name)
        except PersistenceError as e:
            raise ToolError("The product database is unavailable right now", tool_name=self.name) from e

        if not products:
            return f"No product named '{product_name}' was found."
        return format_products(product_name, products)


class GetSalesDataTool(BaseTool):
    """Sales history of one product."""

    name = "get_sales_data"
    description = "Look up the sales history of a product. Takes the product name."
    parameters = {
        "type": "object",
        "properties": {"productName": _PRODUCT_NAME_SCHEMA},
        "required": ["productName"],
    }

    def __init__(self, catalog: CatalogStore) -> None:
        self.catalog = catalog

    async def execute(self, arguments: Dict[str, Any]) -> str:
        product_name = require_text(arguments, "productName", self.name)
        try:
            product, sales = await self.catalog.sales_for(product_name)
        except PersistenceError as e:
            raise ToolError("The sales database is unavailable right now", tool_name=self.name) from e

        if product is None:
            return f"No product named '{product_name}' was found."
        if not sales:
            return f"No sales recorded yet for '{product.name}'."
        return format_sales(product.name, sales)
