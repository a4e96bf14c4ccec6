"""
Delivery Off-Day Repository

Author: TM3
Date: 2025-12-04
"""
from typing import List, Optional, Dict, Any

from vadiler.domain.delivery_off_day import DeliveryOffDay
from vadiler.core.database import get_db_connection_dict


class DeliveryOffDayRepository:

    def find_all(
        self,
        include_inactive: bool = False,
        from_date: Optional[str] = None
    ) -> List[DeliveryOffDay]:
        """Off days ordered by date ascending"""
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            conditions = []
            params = []

            if not include_inactive:
                conditions.append("is_active = true")

            if from_date:
                conditions.append("off_date >= %s")
                params.append(from_date)

            where_clause = " AND ".join(conditions) if conditions else "1=1"

            cursor.execute(f"""
                SELECT * FROM delivery_off_days
                WHERE {where_clause}
                ORDER BY off_date ASC, id ASC
            """, params)
            return [DeliveryOffDay.from_row(row) for row in cursor.fetchall()]

        finally:
            cursor.close()
            conn.close()

    def active_exists_on(self, off_date: str) -> bool:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                SELECT id FROM delivery_off_days
                WHERE off_date = %s AND is_active = true
                LIMIT 1
            """, (off_date,))
            return cursor.fetchone() is not None

        finally:
            cursor.close()
            conn.close()

    def create(self, off_date: str, note: str) -> DeliveryOffDay:
        """Drop inactive rows of the same date, then insert an active one"""
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                DELETE FROM delivery_off_days
                WHERE off_date = %s AND is_active = false
            """, (off_date,))

            cursor.execute("""
                INSERT INTO delivery_off_days (off_date, note, is_active, created_at, updated_at)
                VALUES (%s, %s, true, NOW(), NOW())
                RETURNING *
            """, (off_date, note))
            row = cursor.fetchone()
            conn.commit()
            return DeliveryOffDay.from_row(row)

        except Exception:
            conn.rollback()
            raise

        finally:
            cursor.close()
            conn.close()

    def update(self, off_day_id: int, updates: Dict[str, Any]) -> Optional[DeliveryOffDay]:
        allowed = {'note', 'is_active', 'off_date'}
        fields = {k: v for k, v in updates.items() if k in allowed}

        assignments = [f"{column} = %s" for column in fields] + ["updated_at = NOW()"]
        params = list(fields.values()) + [off_day_id]

        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute(f"""
                UPDATE delivery_off_days
                SET {', '.join(assignments)}
                WHERE id = %s
                RETURNING *
            """, params)
            row = cursor.fetchone()
            conn.commit()
            return DeliveryOffDay.from_row(row) if row else None

        except Exception:
            conn.rollback()
            raise

        finally:
            cursor.close()
            conn.close()

    def delete(self, off_day_id: int) -> None:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("DELETE FROM delivery_off_days WHERE id = %s", (off_day_id,))
            conn.commit()

        except Exception:
            conn.rollback()
            raise

        finally:
            cursor.close()
            conn.close()
