"""
Product Repository - catalog lookups used by orders and categories

The storefront catalog itself is managed elsewhere; this backend only reads
prices (to rebuild order lines) and category membership (for counts).

Author: TM3
Date: 2025-10-17
Updated: 2025-12-04 (storefront catalog: price lookup, category counts)
"""
from typing import List, Dict, Any, Iterable

from vadiler.core.database import get_db_connection_dict


class ProductRepository:

    def find_by_ids(self, product_ids: Iterable[int]) -> Dict[int, Dict[str, Any]]:
        """
        Catalog rows keyed by id

        Returns:
            {id: {id, name, slug, price, category, category_name, image}}
        """
        ids = sorted({pid for pid in product_ids if isinstance(pid, int) and pid > 0})
        if not ids:
            return {}

        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                SELECT id, name, slug, price, category, category_name, image
                FROM products
                WHERE id = ANY(%s)
            """, (ids,))
            return {row['id']: dict(row) for row in cursor.fetchall()}

        finally:
            cursor.close()
            conn.close()

    def find_category_rows(self) -> List[Dict[str, Any]]:
        """(category, occasion_tags, image) for every product"""
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("SELECT category, occasion_tags, image FROM products")
            return [dict(row) for row in cursor.fetchall()]

        finally:
            cursor.close()
            conn.close()

    def count_in_category(self, slug: str, include_secondary: bool = True) -> int:
        """Products whose primary category is slug (plus those tagged with it)"""
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("SELECT COUNT(*) AS total FROM products WHERE category = %s", (slug,))
            total = cursor.fetchone()['total']

            if include_secondary:
                cursor.execute(
                    "SELECT COUNT(*) AS total FROM products WHERE occasion_tags @> ARRAY[%s]::text[]",
                    (slug,)
                )
                total += cursor.fetchone()['total']

            return total

        finally:
            cursor.close()
            conn.close()
