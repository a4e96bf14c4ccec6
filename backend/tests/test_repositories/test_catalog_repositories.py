"""
Unit tests for the catalog-side repositories (categories, products, off days, coupons)

Author: TM3
Date: 2025-12-04
"""
from datetime import date
from unittest.mock import patch

import pytest

from vadiler.repositories.category_repository import CategoryRepository, is_duplicate_primary_key
from vadiler.repositories.coupon_repository import CouponRepository
from vadiler.repositories.delivery_off_day_repository import DeliveryOffDayRepository
from vadiler.repositories.product_repository import ProductRepository


class FakePgError(Exception):
    def __init__(self, message, pgcode):
        super().__init__(message)
        self.pgcode = pgcode


class TestCategoryRepository:

    @patch('vadiler.repositories.category_repository.get_db_connection_dict')
    def test_find_all_active_only(self, mock_get_conn, mock_db):
        # Arrange
        mock_conn, mock_cursor = mock_db
        mock_get_conn.return_value = mock_conn
        mock_cursor.fetchall.return_value = [
            {'id': 1, 'name': 'Güller', 'slug': 'guller', 'order': 1, 'is_active': True},
        ]

        # Act
        categories = CategoryRepository().find_all()

        # Assert
        assert [c.slug for c in categories] == ['guller']
        sql = mock_cursor.execute.call_args[0][0]
        assert 'is_active = true' in sql
        assert 'ORDER BY "order" ASC' in sql

    @patch('vadiler.repositories.category_repository.get_db_connection_dict')
    def test_next_id_on_empty_table(self, mock_get_conn, mock_db):
        mock_conn, mock_cursor = mock_db
        mock_get_conn.return_value = mock_conn
        mock_cursor.fetchone.return_value = {'max_id': 0}

        assert CategoryRepository().next_id() == 1

    def test_update_rejects_unknown_columns(self):
        with pytest.raises(ValueError):
            CategoryRepository().update(1, {'id': 2})

    def test_is_duplicate_primary_key(self):
        assert is_duplicate_primary_key(FakePgError('duplicate key violates "categories_pkey"', '23505'))
        assert not is_duplicate_primary_key(FakePgError('duplicate key violates "categories_slug_key"', '23505'))
        assert not is_duplicate_primary_key(Exception('categories_pkey'))


class TestProductRepository:

    def test_find_by_ids_skips_query_for_invalid_ids(self):
        """No database round trip when no id is a positive integer"""
        with patch('vadiler.repositories.product_repository.get_db_connection_dict') as mock_get_conn:
            assert ProductRepository().find_by_ids(['7', 0, -1, None]) == {}
            mock_get_conn.assert_not_called()

    @patch('vadiler.repositories.product_repository.get_db_connection_dict')
    def test_find_by_ids_keys_rows_by_id(self, mock_get_conn, mock_db):
        mock_conn, mock_cursor = mock_db
        mock_get_conn.return_value = mock_conn
        mock_cursor.fetchall.return_value = [{'id': 7, 'name': 'Güller', 'price': 750}]

        rows = ProductRepository().find_by_ids([7, 7, 3])

        assert rows == {7: {'id': 7, 'name': 'Güller', 'price': 750}}
        assert mock_cursor.execute.call_args[0][1] == ([3, 7],)

    @patch('vadiler.repositories.product_repository.get_db_connection_dict')
    def test_count_in_category_adds_secondary_tags(self, mock_get_conn, mock_db):
        mock_conn, mock_cursor = mock_db
        mock_get_conn.return_value = mock_conn
        mock_cursor.fetchone.side_effect = [{'total': 4}, {'total': 2}]

        assert ProductRepository().count_in_category('guller') == 6
        assert mock_cursor.execute.call_count == 2

    @patch('vadiler.repositories.product_repository.get_db_connection_dict')
    def test_count_in_category_primary_only(self, mock_get_conn, mock_db):
        mock_conn, mock_cursor = mock_db
        mock_get_conn.return_value = mock_conn
        mock_cursor.fetchone.return_value = {'total': 4}

        assert ProductRepository().count_in_category('guller', include_secondary=False) == 4
        assert mock_cursor.execute.call_count == 1


class TestDeliveryOffDayRepository:

    @patch('vadiler.repositories.delivery_off_day_repository.get_db_connection_dict')
    def test_find_all_converts_dates(self, mock_get_conn, mock_db):
        # Arrange
        mock_conn, mock_cursor = mock_db
        mock_get_conn.return_value = mock_conn
        mock_cursor.fetchall.return_value = [
            {'id': 3, 'off_date': date(2025, 12, 31), 'note': 'Yılbaşı', 'is_active': True},
        ]

        # Act
        off_days = DeliveryOffDayRepository().find_all(from_date='2025-12-01')

        # Assert
        assert off_days[0].off_date == '2025-12-31'
        sql, params = mock_cursor.execute.call_args[0]
        assert 'is_active = true AND off_date >= %s' in sql
        assert params == ['2025-12-01']

    @patch('vadiler.repositories.delivery_off_day_repository.get_db_connection_dict')
    def test_create_replaces_inactive_rows(self, mock_get_conn, mock_db):
        """Inactive rows of the same date are removed before the insert"""
        mock_conn, mock_cursor = mock_db
        mock_get_conn.return_value = mock_conn
        mock_cursor.fetchone.return_value = {'id': 9, 'off_date': '2025-12-31', 'note': '', 'is_active': True}

        off_day = DeliveryOffDayRepository().create('2025-12-31', '')

        assert off_day.id == 9
        statements = [c[0][0] for c in mock_cursor.execute.call_args_list]
        assert 'DELETE FROM delivery_off_days' in statements[0]
        assert 'INSERT INTO delivery_off_days' in statements[1]
        mock_conn.commit.assert_called_once()

    @patch('vadiler.repositories.delivery_off_day_repository.get_db_connection_dict')
    def test_update_ignores_unknown_fields(self, mock_get_conn, mock_db):
        mock_conn, mock_cursor = mock_db
        mock_get_conn.return_value = mock_conn
        mock_cursor.fetchone.return_value = None

        assert DeliveryOffDayRepository().update(4, {'note': 'x', 'id': 99}) is None

        sql, params = mock_cursor.execute.call_args[0]
        assert 'note = %s, updated_at = NOW()' in sql
        assert params == ['x', 4]


class TestCouponRepository:

    @patch('vadiler.repositories.coupon_repository.get_db_connection_dict')
    def test_find_by_code_uppercases(self, mock_get_conn, mock_db):
        mock_conn, mock_cursor = mock_db
        mock_get_conn.return_value = mock_conn
        mock_cursor.fetchone.return_value = None

        assert CouponRepository().find_by_code('yaz10') is None
        assert mock_cursor.execute.call_args[0][1] == ('YAZ10',)
