"""
Order Repository - Data Access Layer for Orders

Handles all database queries for orders and returns Order domain models.
JSON columns (products, delivery, payment, timeline) are written with
psycopg2's Json adapter.

Author: TM3
Date: 2025-10-17
Updated: 2025-12-04 (storefront orders, payment token lookup, deleted_orders backup and restore)
"""
import logging
from datetime import datetime, timezone
from typing import List, Optional, Tuple, Dict, Any

from psycopg2.extras import Json

from vadiler.domain.order import Order
from vadiler.domain.serialization import to_json_value
from vadiler.core.database import get_db_connection_dict

logger = logging.getLogger(__name__)

# Columns written as JSON
JSON_COLUMNS = {'products', 'delivery', 'payment', 'timeline', 'message', 'refund'}

# Columns an update may touch
UPDATABLE_COLUMNS = {
    'customer_id', 'customer_name', 'customer_email', 'customer_phone', 'is_guest',
    'status', 'products', 'delivery', 'payment', 'message', 'subtotal', 'discount',
    'delivery_fee', 'total', 'notes', 'tracking_url', 'order_time_group', 'timeline',
    'refund', 'delivered_at', 'updated_at',
}

# Columns restored from a deleted_orders backup
RESTORABLE_COLUMNS = UPDATABLE_COLUMNS | {'id', 'order_number', 'created_at'}


def _adapt(column: str, value: Any) -> Any:
    if column in JSON_COLUMNS and value is not None:
        return Json(value)
    return value


class OrderRepository:
    """
    Repository for Order data access

    All SQL queries for orders are centralized here.
    """

    def find_by_id(self, order_id: str) -> Optional[Order]:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("SELECT * FROM orders WHERE id = %s", (order_id,))
            row = cursor.fetchone()
            return Order.from_row(row) if row else None

        finally:
            cursor.close()
            conn.close()

    def find_by_payment_token(self, token: str) -> Optional[Order]:
        """
        Find the order whose payment JSON carries this gateway token

        The Checkout Form callback may only provide the token.
        """
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                SELECT * FROM orders
                WHERE payment @> %s::jsonb
                ORDER BY created_at DESC
                LIMIT 1
            """, (Json({'token': token}),))
            row = cursor.fetchone()
            return Order.from_row(row) if row else None

        finally:
            cursor.close()
            conn.close()

    def find_by_order_number(self, order_number: int) -> Optional[Order]:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("SELECT * FROM orders WHERE order_number = %s", (order_number,))
            row = cursor.fetchone()
            return Order.from_row(row) if row else None

        finally:
            cursor.close()
            conn.close()

    def find_all(
        self,
        customer_id: Optional[str] = None,
        status: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0
    ) -> Tuple[List[Order], int]:
        """
        Find orders with filters, newest first

        Returns:
            Tuple of (list of orders, total count)
        """
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            conditions = []
            params = []

            if customer_id:
                conditions.append("customer_id = %s")
                params.append(customer_id)

            if status:
                conditions.append("status = %s")
                params.append(status)

            where_clause = " AND ".join(conditions) if conditions else "1=1"

            cursor.execute(f"SELECT COUNT(*) as total FROM orders WHERE {where_clause}", params)
            total = cursor.fetchone()['total']

            query = f"SELECT * FROM orders WHERE {where_clause} ORDER BY created_at DESC"
            if limit is not None:
                query += " LIMIT %s OFFSET %s"
                params = params + [limit, offset]

            cursor.execute(query, params)
            orders = [Order.from_row(row) for row in cursor.fetchall()]
            return orders, total

        finally:
            cursor.close()
            conn.close()

    def find_paid_for_report(
        self,
        statuses: List[str],
        start: Optional[datetime] = None,
        end: Optional[datetime] = None
    ) -> List[Order]:
        """Paid orders (payment.status = 'paid') in the given statuses, newest first"""
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            conditions = ["payment->>'status' = 'paid'", "status = ANY(%s)"]
            params: List[Any] = [list(statuses)]

            if start:
                conditions.append("created_at >= %s")
                params.append(start)

            if end:
                conditions.append("created_at <= %s")
                params.append(end)

            cursor.execute(f"""
                SELECT * FROM orders
                WHERE {' AND '.join(conditions)}
                ORDER BY created_at DESC
            """, params)
            return [Order.from_row(row) for row in cursor.fetchall()]

        finally:
            cursor.close()
            conn.close()

    def find_stuck_payments(
        self,
        statuses: List[str],
        created_after: datetime,
        created_before: datetime,
        limit: int = 20
    ) -> List[Order]:
        """Orders still waiting for payment inside a creation window"""
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                SELECT * FROM orders
                WHERE status = ANY(%s)
                  AND created_at >= %s
                  AND created_at <= %s
                ORDER BY created_at ASC
                LIMIT %s
            """, (list(statuses), created_after, created_before, limit))
            return [Order.from_row(row) for row in cursor.fetchall()]

        finally:
            cursor.close()
            conn.close()

    def count(self) -> int:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("SELECT COUNT(*) as total FROM orders")
            return cursor.fetchone()['total']

        finally:
            cursor.close()
            conn.close()

    def create(self, data: Dict[str, Any]) -> Order:
        """Insert an order; order_number is assigned by the database"""
        columns = list(data.keys())
        placeholders = ", ".join(["%s"] * len(columns))
        values = [_adapt(c, data[c]) for c in columns]

        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute(
                f"INSERT INTO orders ({', '.join(columns)}) VALUES ({placeholders}) RETURNING *",
                values
            )
            row = cursor.fetchone()
            conn.commit()
            return Order.from_row(row)

        except Exception:
            conn.rollback()
            raise

        finally:
            cursor.close()
            conn.close()

    def update_fields(
        self,
        order_id: str,
        fields: Dict[str, Any],
        expected_status: Optional[str] = None
    ) -> Optional[Order]:
        """
        Update the given columns and return the updated order (None if no row matched)

        Args:
            expected_status: only update when the current status still matches
        """
        unknown = set(fields) - UPDATABLE_COLUMNS
        if unknown:
            raise ValueError(f"Unknown order columns: {sorted(unknown)}")
        if not fields:
            return self.find_by_id(order_id)

        assignments = ", ".join(f"{c} = %s" for c in fields)
        params = [_adapt(c, v) for c, v in fields.items()] + [order_id]
        where = "id = %s"
        if expected_status is not None:
            where += " AND status = %s"
            params.append(expected_status)

        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute(f"UPDATE orders SET {assignments} WHERE {where} RETURNING *", params)
            row = cursor.fetchone()
            conn.commit()
            return Order.from_row(row) if row else None

        except Exception:
            conn.rollback()
            raise

        finally:
            cursor.close()
            conn.close()

    def delete_with_backup(self, order_id: str) -> Tuple[bool, bool]:
        """
        Copy the order into deleted_orders, then delete it

        Returns:
            (deleted, backed_up). A failed backup does not block the delete.
        """
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("SELECT * FROM orders WHERE id = %s", (order_id,))
            row = cursor.fetchone()
            if not row:
                return False, False

            backed_up = True
            try:
                cursor.execute("SAVEPOINT order_backup")
                cursor.execute("""
                    INSERT INTO deleted_orders (original_id, order_number, order_data, deleted_at)
                    VALUES (%s, %s, %s, NOW())
                """, (str(row['id']), row.get('order_number'), Json(to_json_value(dict(row)))))
                cursor.execute("RELEASE SAVEPOINT order_backup")
            except Exception as e:
                logger.error(f"Order {order_id} backup failed, deleting anyway: {e}")
                cursor.execute("ROLLBACK TO SAVEPOINT order_backup")
                backed_up = False

            cursor.execute("DELETE FROM orders WHERE id = %s", (order_id,))
            conn.commit()
            return True, backed_up

        except Exception:
            conn.rollback()
            raise

        finally:
            cursor.close()
            conn.close()

    # ------------------------------------------------------------------
    # deleted_orders backups
    # ------------------------------------------------------------------

    def find_deleted(self) -> List[Dict[str, Any]]:
        """Backups not yet restored, most recently deleted first"""
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                SELECT * FROM deleted_orders
                WHERE COALESCE(is_restored, FALSE) = FALSE
                ORDER BY deleted_at DESC
            """)
            return [dict(row) for row in cursor.fetchall()]

        finally:
            cursor.close()
            conn.close()

    def find_deleted_by_id(self, deleted_id: str) -> Optional[Dict[str, Any]]:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("SELECT * FROM deleted_orders WHERE id = %s", (deleted_id,))
            row = cursor.fetchone()
            return dict(row) if row else None

        finally:
            cursor.close()
            conn.close()

    def restore_deleted(self, deleted_id: str, order_data: Dict[str, Any]) -> Order:
        """
        Insert the backed-up row into orders and flag the backup as restored

        Both statements run in one transaction. Keys that are not order
        columns are dropped.
        """
        data = {c: v for c, v in order_data.items() if c in RESTORABLE_COLUMNS}
        data['updated_at'] = datetime.now(timezone.utc)

        columns = list(data.keys())
        placeholders = ", ".join(["%s"] * len(columns))
        values = [_adapt(c, data[c]) for c in columns]

        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute(
                f"INSERT INTO orders ({', '.join(columns)}) VALUES ({placeholders}) RETURNING *",
                values
            )
            row = cursor.fetchone()
            cursor.execute("""
                UPDATE deleted_orders
                SET is_restored = TRUE, restored_at = NOW()
                WHERE id = %s
            """, (deleted_id,))
            conn.commit()
            return Order.from_row(row)

        except Exception:
            conn.rollback()
            raise

        finally:
            cursor.close()
            conn.close()
