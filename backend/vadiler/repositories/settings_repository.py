"""
Site Settings Repository

Rows of site_settings(category, key, value JSONB, is_public, updated_at).

Author: TM3
Date: 2025-12-04
"""
from typing import Any, Dict, List, Optional

from psycopg2.extras import Json

from vadiler.core.database import get_db_connection_dict


class SettingsRepository:

    def find_value(self, category: str, key: str) -> Optional[Dict[str, Any]]:
        """The row holding value, or None when the setting does not exist"""
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                SELECT value FROM site_settings
                WHERE category = %s AND key = %s
                LIMIT 1
            """, (category, key))
            row = cursor.fetchone()
            return dict(row) if row else None

        finally:
            cursor.close()
            conn.close()

    def find_category(self, category: str, public_only: bool = True) -> List[Dict[str, Any]]:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            conditions = ["category = %s"]
            params = [category]

            if public_only:
                conditions.append("is_public = true")

            cursor.execute(f"""
                SELECT key, value FROM site_settings
                WHERE {' AND '.join(conditions)}
            """, params)
            return [dict(row) for row in cursor.fetchall()]

        finally:
            cursor.close()
            conn.close()

    def upsert(self, category: str, key: str, value: Any) -> Dict[str, Any]:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                INSERT INTO site_settings (category, key, value, updated_at)
                VALUES (%s, %s, %s, NOW())
                ON CONFLICT (category, key)
                DO UPDATE SET value = EXCLUDED.value, updated_at = NOW()
                RETURNING *
            """, (category, key, Json(value)))
            row = cursor.fetchone()
            conn.commit()
            return dict(row)

        except Exception:
            conn.rollback()
            raise

        finally:
            cursor.close()
            conn.close()
