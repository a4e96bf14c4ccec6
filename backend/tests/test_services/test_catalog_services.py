"""
Unit tests for the coupon, delivery off-day and category services

Author: TM3
Date: 2025-12-04
"""
from datetime import date, datetime, timezone
from decimal import Decimal
from unittest.mock import MagicMock

import psycopg2
import pytest

from vadiler.domain.category import Category
from vadiler.domain.coupon import Coupon
from vadiler.domain.delivery_off_day import DeliveryOffDay
from vadiler.services.category_service import CategoryError, CategoryService, count_products
from vadiler.services.coupon_service import CouponError, CouponService
from vadiler.services.delivery_off_day_service import (
    DeliveryOffDayService,
    OffDayError,
    parse_off_day_id,
)

NOW = datetime(2025, 12, 4, 12, 0, tzinfo=timezone.utc)


class PgError(psycopg2.Error):
    """psycopg2 error with a settable pgcode"""

    def __init__(self, message, pgcode=None):
        super().__init__(message)
        self._pgcode = pgcode

    @property
    def pgcode(self):
        return self._pgcode


def make_coupon(**overrides):
    data = {
        'id': 1,
        'code': 'YAZ10',
        'type': 'percentage',
        'value': Decimal('10'),
        'is_active': True,
        'usage_limit': None,
        'used_count': 0,
        'min_order_amount': Decimal('0'),
    }
    data.update(overrides)
    return Coupon(**data)


# ============================================================================
# Coupons
# ============================================================================

class TestCouponService:

    def _service(self, coupon):
        repo = MagicMock()
        repo.find_by_code.return_value = coupon
        return CouponService(coupon_repo=repo)

    def test_percentage_discount_rounds_and_consumes_use(self):
        service = self._service(make_coupon())

        result = service.validate('yaz10', 1234.5, now=NOW)

        assert result['success'] is True
        assert result['discount'] == 123.0
        assert result['coupon'] == {'id': 1, 'code': 'YAZ10', 'type': 'percentage', 'value': 10.0}
        service.coupon_repo.increment_used_count.assert_called_once_with(1)

    def test_percentage_discount_capped(self):
        service = self._service(make_coupon(max_discount_amount=Decimal('50')))
        assert service.validate('YAZ10', 1000, now=NOW)['discount'] == 50.0

    def test_fixed_discount(self):
        service = self._service(make_coupon(type='fixed', value=Decimal('75')))
        assert service.validate('YAZ10', 300, now=NOW)['discount'] == 75.0

    def test_missing_code(self):
        with pytest.raises(CouponError) as exc:
            self._service(None).validate('', 100)
        assert exc.value.message == 'Kupon kodu gereklidir.'

    def test_unknown_code(self):
        with pytest.raises(CouponError) as exc:
            self._service(None).validate('NOPE', 100)
        assert exc.value.status_code == 404

    @pytest.mark.parametrize("overrides,message", [
        ({'is_active': False}, 'Bu kupon artık geçerli değil.'),
        ({'valid_from': datetime(2026, 1, 1)}, 'Bu kupon şu anda geçerli değil.'),
        ({'valid_until': datetime(2025, 12, 1, tzinfo=timezone.utc)}, 'Bu kupon şu anda geçerli değil.'),
        ({'usage_limit': 5, 'used_count': 5}, 'Bu kupon kullanım limitine ulaşmış.'),
        ({'min_order_amount': Decimal('500')},
         'Bu kuponu kullanmak için minimum 500 TL sipariş vermelisiniz.'),
    ])
    def test_rejections_do_not_consume(self, overrides, message):
        service = self._service(make_coupon(**overrides))

        with pytest.raises(CouponError) as exc:
            service.validate('YAZ10', 200, now=NOW)

        assert exc.value.message == message
        assert exc.value.status_code == 400
        service.coupon_repo.increment_used_count.assert_not_called()

    @pytest.mark.parametrize('order_total', ['Infinity', 'NaN', '1e400', float('inf')])
    def test_non_finite_total_rejected(self, order_total):
        service = self._service(make_coupon())

        with pytest.raises(CouponError) as exc:
            service.validate('yaz10', order_total, now=NOW)

        assert exc.value.message == 'Geçersiz sipariş tutarı.'
        assert exc.value.status_code == 400
        service.coupon_repo.increment_used_count.assert_not_called()


# ============================================================================
# Delivery off days
# ============================================================================

def make_off_day(off_day_id, off_date, is_active=True):
    return DeliveryOffDay(id=off_day_id, off_date=off_date, note='', is_active=is_active)


class TestDeliveryOffDayService:

    @pytest.fixture
    def service(self):
        return DeliveryOffDayService(repo=MagicMock())

    def test_parse_off_day_id(self):
        assert parse_off_day_id('12') == 12
        assert parse_off_day_id('12.0') == 12
        assert parse_off_day_id('1.5') is None
        assert parse_off_day_id('0') is None
        assert parse_off_day_id('abc') is None

    def test_list_upcoming_active(self, service):
        service.repo.find_all.return_value = [make_off_day(1, '2025-12-31')]

        result = service.list_off_days(today=date(2025, 12, 4))

        service.repo.find_all.assert_called_once_with(include_inactive=False, from_date='2025-12-04')
        assert result['total'] == 1
        assert result['offDays'][0]['offDate'] == '2025-12-31'

    def test_list_including_past(self, service):
        service.repo.find_all.return_value = []

        service.list_off_days(include_inactive=True, include_past=True)

        service.repo.find_all.assert_called_once_with(include_inactive=True, from_date=None)

    def test_create_trims_and_inserts(self, service):
        service.repo.active_exists_on.return_value = False
        service.repo.create.return_value = make_off_day(5, '2025-12-31')

        off_day = service.create_off_day({'offDate': ' 2025-12-31 ', 'note': ' Yılbaşı '})

        assert off_day.id == 5
        service.repo.create.assert_called_once_with('2025-12-31', 'Yılbaşı')

    @pytest.mark.parametrize("body,message", [
        ([], 'Geçersiz istek'),
        ({'offDate': '31.12.2025'}, 'Geçersiz tarih formatı'),
        ({}, 'Geçersiz tarih formatı'),
    ])
    def test_create_validation(self, service, body, message):
        with pytest.raises(OffDayError) as exc:
            service.create_off_day(body)
        assert exc.value.message == message

    def test_create_conflict(self, service):
        service.repo.active_exists_on.return_value = True

        with pytest.raises(OffDayError) as exc:
            service.create_off_day({'offDate': '2025-12-31'})

        assert exc.value.status_code == 409
        service.repo.create.assert_not_called()

    def test_create_unique_violation_is_conflict(self, service):
        service.repo.active_exists_on.side_effect = Exception("timeout")
        service.repo.create.side_effect = PgError('duplicate key', '23505')

        with pytest.raises(OffDayError) as exc:
            service.create_off_day({'offDate': '2025-12-31'})

        assert exc.value.status_code == 409

    def test_create_other_error(self, service):
        service.repo.active_exists_on.return_value = False
        service.repo.create.side_effect = Exception("boom")

        with pytest.raises(OffDayError) as exc:
            service.create_off_day({'offDate': '2025-12-31'})

        assert exc.value.status_code == 500
        assert exc.value.message == 'Off günü eklenemedi'

    def test_update_builds_fields(self, service):
        service.repo.update.return_value = make_off_day(3, '2026-01-01', is_active=False)

        service.update_off_day('3', {'note': ' x ', 'isActive': False, 'offDate': '2026-01-01', 'id': 9})

        service.repo.update.assert_called_once_with(
            3, {'note': 'x', 'is_active': False, 'off_date': '2026-01-01'}
        )

    def test_update_invalid_id(self, service):
        with pytest.raises(OffDayError, match='Geçersiz ID'):
            service.update_off_day('abc', {})

    def test_update_missing_row(self, service):
        service.repo.update.return_value = None

        with pytest.raises(OffDayError) as exc:
            service.update_off_day('3', {'note': 'x'})

        assert exc.value.status_code == 404

    def test_delete_error(self, service):
        service.repo.delete.side_effect = Exception("boom")

        with pytest.raises(OffDayError) as exc:
            service.delete_off_day('3')

        assert exc.value.message == 'Silinemedi'

    def test_cleanup_deletes_inactive_duplicates(self, service):
        """Only inactive rows on dates with several rows are removed"""
        # Arrange
        service.repo.find_all.return_value = [
            make_off_day(1, '2025-12-31', is_active=True),
            make_off_day(2, '2025-12-31', is_active=False),
            make_off_day(3, '2025-12-31', is_active=False),
            make_off_day(4, '2026-01-01', is_active=False),
        ]
        service.repo.delete.side_effect = [None, Exception("locked")]

        # Act
        result = service.cleanup_duplicates()

        # Assert
        assert result['success'] is True
        assert result['message'] == '1 duplicate kayıt temizlendi'
        assert result['stats'] == {'totalRecords': 4, 'duplicateDates': 1, 'deletedRecords': 1}
        assert [c[0][0] for c in service.repo.delete.call_args_list] == [2, 3]

    def test_cleanup_nothing_to_do(self, service):
        service.repo.find_all.return_value = [make_off_day(1, '2025-12-31')]

        result = service.cleanup_duplicates()

        assert result['message'] == 'Temizlenecek kayıt yok'
        service.repo.delete.assert_not_called()


# ============================================================================
# Categories
# ============================================================================

def make_category(category_id, slug, order=0, **overrides):
    return Category(id=category_id, name=slug.title(), slug=slug, order=order, **overrides)


class TestCategoryService:

    @pytest.fixture
    def service(self):
        return CategoryService(category_repo=MagicMock(), product_repo=MagicMock())

    def test_count_products(self):
        counts, images = count_products([
            {'category': 'guller', 'occasion_tags': ['dogum-gunu-hediyeleri'], 'image': '/a.jpg'},
            {'category': 'guller', 'occasion_tags': None, 'image': '/b.jpg'},
            {'category': None, 'occasion_tags': ['guller', ''], 'image': None},
        ])

        assert counts == {'guller': 3, 'dogum-gunu-hediyeleri': 1}
        assert images == {'guller': '/a.jpg', 'dogum-gunu-hediyeleri': '/a.jpg'}

    def test_list_pins_campaign_categories_first(self, service):
        # Arrange
        service.category_repo.find_all.return_value = [
            make_category(1, 'guller', order=1),
            make_category(2, 'orkideler', order=2),
            make_category(3, 'dogum-gunu-hediyeleri', order=3),
            make_category(4, 'haftanin-kampanyalari', order=4, image='/kampanya.jpg'),
        ]
        service.product_repo.find_category_rows.return_value = [
            {'category': 'guller', 'occasion_tags': ['haftanin-kampanyalari'], 'image': '/gul.jpg'},
        ]

        # Act
        result = service.list_categories()

        # Assert
        slugs = [c['slug'] for c in result['categories']]
        assert slugs == ['haftanin-kampanyalari', 'dogum-gunu-hediyeleri', 'guller', 'orkideler']
        by_slug = {c['slug']: c for c in result['categories']}
        assert by_slug['guller']['productCount'] == 1
        assert by_slug['guller']['image'] == '/gul.jpg'
        assert by_slug['haftanin-kampanyalari']['image'] == '/kampanya.jpg'
        assert result['total'] == 4

    def test_list_only_with_products_keeps_total(self, service):
        service.category_repo.find_all.return_value = [
            make_category(1, 'guller'), make_category(2, 'orkideler'),
        ]
        service.product_repo.find_category_rows.return_value = [{'category': 'guller', 'image': None}]

        result = service.list_categories(only_with_products=True)

        assert [c['slug'] for c in result['categories']] == ['guller']
        assert result['total'] == 2

    def test_get_category_detail(self, service):
        service.category_repo.find_by_id.return_value = make_category(1, 'guller', cover_video='/v.mp4')
        service.product_repo.count_in_category.return_value = 7

        detail = service.get_category(1)

        service.product_repo.count_in_category.assert_called_once_with('guller', include_secondary=False)
        assert detail['productCount'] == 7
        assert detail['coverType'] == 'video'
        assert detail['coverCtaText'] == 'Keşfet'

    def test_get_category_missing(self, service):
        service.category_repo.find_by_id.return_value = None
        with pytest.raises(CategoryError) as exc:
            service.get_category(99)
        assert exc.value.status_code == 404

    def test_create_generates_unique_slug(self, service):
        # Arrange
        service.category_repo.slug_exists.side_effect = [True, True, False]
        service.category_repo.next_order.return_value = 6
        service.category_repo.next_id.return_value = 12
        service.category_repo.insert.side_effect = lambda data: Category(**data)

        # Act
        created = service.create_category({'name': ' Doğum Günü ', 'isActive': False})

        # Assert
        assert created['slug'] == 'dogum-gunu-3'
        assert created['order'] == 6
        assert created['isActive'] is False
        assert created['productCount'] == 0

    def test_create_retries_on_primary_key_collision(self, service):
        service.category_repo.slug_exists.return_value = False
        service.category_repo.next_id.return_value = 12
        service.category_repo.insert.side_effect = [
            PgError('duplicate key value violates unique constraint "categories_pkey"', '23505'),
            Category(id=13, name='Güller', slug='guller'),
        ]

        created = service.create_category({'name': 'Güller', 'order': 2})

        assert created['id'] == 13
        ids = [c[0][0]['id'] for c in service.category_repo.insert.call_args_list]
        assert ids == [12, 13]

    def test_create_other_database_error(self, service):
        service.category_repo.slug_exists.return_value = False
        service.category_repo.next_id.return_value = 1
        service.category_repo.insert.side_effect = PgError('null value', '23502')

        with pytest.raises(CategoryError) as exc:
            service.create_category({'name': 'Güller'})

        assert exc.value.message == 'Kategori oluşturulamadı'
        assert service.category_repo.insert.call_count == 1

    def test_create_requires_name(self, service):
        with pytest.raises(CategoryError, match='İsim zorunludur'):
            service.create_category({'name': '  '})

    def test_update_renames_slug(self, service):
        # Arrange
        service.category_repo.find_by_id.return_value = make_category(1, 'guller')
        service.category_repo.slug_exists.return_value = False
        service.category_repo.update.return_value = make_category(1, 'beyaz-guller')
        service.product_repo.count_in_category.return_value = 2

        # Act
        result = service.update_category({'id': 1, 'name': 'Beyaz Güller', 'isActive': True})

        # Assert
        fields = service.category_repo.update.call_args[0][1]
        assert fields == {'name': 'Beyaz Güller', 'is_active': True, 'slug': 'beyaz-guller'}
        assert result['productCount'] == 2
        service.product_repo.count_in_category.assert_called_once_with('beyaz-guller')

    def test_update_requires_numeric_id(self, service):
        with pytest.raises(CategoryError, match='Kategori ID zorunludur'):
            service.update_category({'id': '1'})

    def test_delete_blocked_when_products_exist(self, service):
        service.category_repo.find_by_id.return_value = make_category(1, 'guller')
        service.product_repo.count_in_category.return_value = 3

        with pytest.raises(CategoryError) as exc:
            service.delete_category('1')

        assert exc.value.message == 'Bu kategoride 3 ürün var. Önce ürünleri başka kategoriye taşıyın.'
        service.category_repo.delete.assert_not_called()

    def test_delete_empty_category(self, service):
        service.category_repo.find_by_id.return_value = make_category(1, 'guller')
        service.product_repo.count_in_category.return_value = 0

        service.delete_category('1')

        service.category_repo.delete.assert_called_once_with(1)
