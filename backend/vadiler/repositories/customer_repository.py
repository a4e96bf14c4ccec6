"""
Customer Repository - Data Access Layer for storefront customers

Author: TM3
Date: 2025-12-04
"""
from datetime import datetime, timezone
from typing import Optional, Dict, Any

from psycopg2.extras import Json

from vadiler.domain.customer import Customer
from vadiler.core.database import get_db_connection_dict


class CustomerRepository:

    def find_by_id(self, customer_id: str) -> Optional[Customer]:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("SELECT * FROM customers WHERE id = %s", (customer_id,))
            row = cursor.fetchone()
            return Customer.from_row(row) if row else None

        finally:
            cursor.close()
            conn.close()

    def find_by_email(self, email: str) -> Optional[Customer]:
        """Lookup by lower-cased email"""
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute(
                "SELECT * FROM customers WHERE email = %s LIMIT 1",
                ((email or '').lower(),)
            )
            row = cursor.fetchone()
            return Customer.from_row(row) if row else None

        finally:
            cursor.close()
            conn.close()

    def email_exists(self, email: str) -> bool:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("SELECT id FROM customers WHERE email = %s LIMIT 1", ((email or '').lower(),))
            return cursor.fetchone() is not None

        finally:
            cursor.close()
            conn.close()

    def create(self, data: Dict[str, Any]) -> Customer:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                INSERT INTO customers (
                    id, email, name, phone, password,
                    addresses, orders, favorites,
                    total_spent, order_count, last_order_date,
                    is_active, notes, tags,
                    created_at, updated_at
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, NOW(), NOW())
                RETURNING *
            """, (
                data['id'],
                data['email'],
                data.get('name'),
                data.get('phone'),
                data.get('password'),
                Json(data.get('addresses', [])),
                Json(data.get('orders', [])),
                Json(data.get('favorites', [])),
                data.get('total_spent', 0),
                data.get('order_count', 0),
                data.get('last_order_date'),
                data.get('is_active', True),
                data.get('notes', ''),
                data.get('tags', []),
            ))
            row = cursor.fetchone()
            conn.commit()
            return Customer.from_row(row)

        except Exception:
            conn.rollback()
            raise

        finally:
            cursor.close()
            conn.close()

    def update_password(self, customer_id: str, password_hash: str) -> None:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute(
                "UPDATE customers SET password = %s, updated_at = NOW() WHERE id = %s",
                (password_hash, customer_id)
            )
            conn.commit()

        except Exception:
            conn.rollback()
            raise

        finally:
            cursor.close()
            conn.close()

    def record_order(self, customer_id: str, order_id: str, order_total: float) -> bool:
        """Append the order to the member's history and bump stats"""
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                SELECT orders, order_count, total_spent
                FROM customers WHERE id = %s
                FOR UPDATE
            """, (customer_id,))
            row = cursor.fetchone()
            if not row:
                conn.rollback()
                return False

            orders = list(row.get('orders') or [])
            orders.append(order_id)

            cursor.execute("""
                UPDATE customers
                SET orders = %s,
                    order_count = %s,
                    total_spent = %s,
                    last_order_date = %s,
                    updated_at = NOW()
                WHERE id = %s
            """, (
                Json(orders),
                (row.get('order_count') or 0) + 1,
                float(row.get('total_spent') or 0) + float(order_total),
                datetime.now(timezone.utc),
                customer_id,
            ))
            conn.commit()
            return True

        except Exception:
            conn.rollback()
            raise

        finally:
            cursor.close()
            conn.close()
