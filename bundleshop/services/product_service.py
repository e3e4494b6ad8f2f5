# bundleshop/services/product_service.py
from typing import List, Optional
from ..models.product import Product

class ProductService:
    """Read-only access to the product catalog"""

    def __init__(self, db):
        self.db = db

    async def get_product(self, product_id: int) -> Optional[Product]:
        async with self.db.pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT * FROM products WHERE id = $1", product_id
            )
            return Product.model_validate(dict(row)) if row else None

    async def get_active_products(self) -> List[Product]:
        async with self.db.pool.acquire() as conn:
            rows = await conn.fetch("""
                SELECT * FROM products
                WHERE is_active = TRUE
                ORDER BY service_type, price
            """)
            return [Product.model_validate(dict(row)) for row in rows]
