"""Tools the model can call before replying."""

from streamchat.tools.base import BaseTool, ToolRegistry, require_text
from streamchat.tools.catalog import (
    CatalogStore,
    GetProductInfoTool,
    GetSalesDataTool,
    ProductRecord,
    SaleRecord,
)
from streamchat.tools.documents import SearchDocumentsTool

__all__ = [
    "BaseTool",
    "ToolRegistry",
    "require_text",
    "CatalogStore",
    "ProductRecord",
    "SaleRecord",
    "GetProductInfoTool",
    "GetSalesDataTool",
    "SearchDocumentsTool",
]
