"""
Category Repository - Data Access Layer for product categories

Product counts are not trusted from categories.product_count; they are
computed from products.category (primary) and products.occasion_tags
(secondary).

Author: TM3
Date: 2025-12-04
"""
from typing import List, Optional, Dict, Any

import psycopg2

from vadiler.domain.category import Category
from vadiler.core.database import get_db_connection_dict

# Columns an update may touch
UPDATABLE_COLUMNS = {'name', 'slug', 'description', 'image', 'order', 'is_active', 'product_count'}


def is_duplicate_primary_key(error: Exception, constraint_name: str = 'categories_pkey') -> bool:
    """True for a unique violation (23505) on the given constraint"""
    return getattr(error, 'pgcode', None) == '23505' and constraint_name in str(error)


class CategoryRepository:

    def find_all(self, include_inactive: bool = False) -> List[Category]:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            where_clause = "1=1" if include_inactive else "is_active = true"
            cursor.execute(f'SELECT * FROM categories WHERE {where_clause} ORDER BY "order" ASC')
            return [Category.model_validate(dict(row)) for row in cursor.fetchall()]

        finally:
            cursor.close()
            conn.close()

    def find_by_id(self, category_id: int) -> Optional[Category]:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("SELECT * FROM categories WHERE id = %s", (category_id,))
            row = cursor.fetchone()
            return Category.model_validate(dict(row)) if row else None

        finally:
            cursor.close()
            conn.close()

    def slug_exists(self, slug: str) -> bool:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("SELECT id FROM categories WHERE slug = %s LIMIT 1", (slug,))
            return cursor.fetchone() is not None

        finally:
            cursor.close()
            conn.close()

    def next_id(self) -> int:
        """max(id) + 1; the id sequence is not trusted"""
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("SELECT COALESCE(MAX(id), 0) AS max_id FROM categories")
            return int(cursor.fetchone()['max_id']) + 1

        finally:
            cursor.close()
            conn.close()

    def next_order(self) -> int:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute('SELECT COALESCE(MAX("order"), 0) AS max_order FROM categories')
            return int(cursor.fetchone()['max_order']) + 1

        finally:
            cursor.close()
            conn.close()

    def insert(self, data: Dict[str, Any]) -> Category:
        """Insert one category with an explicit id (raises psycopg2 errors as-is)"""
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                INSERT INTO categories (
                    id, name, slug, description, image, product_count, "order", is_active,
                    created_at, updated_at
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, NOW(), NOW())
                RETURNING *
            """, (
                data['id'],
                data['name'],
                data['slug'],
                data.get('description', ''),
                data.get('image', ''),
                data.get('product_count', 0),
                data.get('order', 0),
                data.get('is_active', True),
            ))
            row = cursor.fetchone()
            conn.commit()
            return Category.model_validate(dict(row))

        except psycopg2.Error:
            conn.rollback()
            raise

        finally:
            cursor.close()
            conn.close()

    def update(self, category_id: int, fields: Dict[str, Any]) -> Optional[Category]:
        unknown = set(fields) - UPDATABLE_COLUMNS
        if unknown:
            raise ValueError(f"Unknown category columns: {sorted(unknown)}")

        assignments = [f'"{column}" = %s' for column in fields] + ["updated_at = NOW()"]
        params = list(fields.values()) + [category_id]

        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute(f"""
                UPDATE categories
                SET {', '.join(assignments)}
                WHERE id = %s
                RETURNING *
            """, params)
            row = cursor.fetchone()
            conn.commit()
            return Category.model_validate(dict(row)) if row else None

        except Exception:
            conn.rollback()
            raise

        finally:
            cursor.close()
            conn.close()

    def delete(self, category_id: int) -> None:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("DELETE FROM categories WHERE id = %s", (category_id,))
            conn.commit()

        except Exception:
            conn.rollback()
            raise

        finally:
            cursor.close()
            conn.close()
