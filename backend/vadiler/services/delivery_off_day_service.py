"""
Delivery Off-Day Service
Calendar of dates without deliveries, managed from the admin panel

Author: TM3
Date: 2025-12-04
"""
import logging
from datetime import date
from typing import Any, Dict, List, Optional

from vadiler.domain.delivery_off_day import DeliveryOffDay, is_valid_off_date
from vadiler.repositories.delivery_off_day_repository import DeliveryOffDayRepository

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = '23505'


class OffDayError(Exception):

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def parse_off_day_id(value: Any) -> Optional[int]:
    """Positive integer id from a path segment, else None"""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not number.is_integer() or number <= 0:
        return None
    return int(number)


class DeliveryOffDayService:

    def __init__(self, repo: Optional[DeliveryOffDayRepository] = None):
        self.repo = repo or DeliveryOffDayRepository()

    def list_off_days(self, include_inactive: bool = False, include_past: bool = False,
                      today: Optional[date] = None) -> Dict[str, Any]:
        from_date = None if include_past else (today or date.today()).isoformat()
        off_days = self.repo.find_all(include_inactive=include_inactive, from_date=from_date)
        return {
            'offDays': [off_day.to_api() for off_day in off_days],
            'total': len(off_days),
        }

    def create_off_day(self, body: Any) -> DeliveryOffDay:
        if not isinstance(body, dict):
            raise OffDayError('Geçersiz istek', 400)

        off_date = body['offDate'].strip() if isinstance(body.get('offDate'), str) else ''
        note = body['note'].strip() if isinstance(body.get('note'), str) else ''

        if not is_valid_off_date(off_date):
            raise OffDayError('Geçersiz tarih formatı', 400)

        try:
            exists = self.repo.active_exists_on(off_date)
        except Exception as e:
            logger.warning(f"Could not check existing off day for {off_date}: {e}")
            exists = False

        if exists:
            raise OffDayError('Bu tarih için zaten bir off günü kaydı mevcut', 409)

        try:
            off_day = self.repo.create(off_date, note)
        except Exception as e:
            logger.error(f"Error inserting delivery off day: {e}")
            if getattr(e, 'pgcode', None) == UNIQUE_VIOLATION:
                raise OffDayError(
                    'Bu tarih için zaten bir off günü kaydı mevcut. Lütfen başka bir tarih seçin.',
                    409
                )
            raise OffDayError('Off günü eklenemedi', 500)

        logger.info(f"Delivery off day added: {off_day.off_date}")
        return off_day

    def update_off_day(self, off_day_id: Any, body: Any) -> DeliveryOffDay:
        parsed_id = parse_off_day_id(off_day_id)
        if not parsed_id:
            raise OffDayError('Geçersiz ID', 400)

        if not isinstance(body, dict):
            raise OffDayError('Geçersiz istek', 400)

        updates: Dict[str, Any] = {}
        if isinstance(body.get('note'), str):
            updates['note'] = body['note'].strip()
        if isinstance(body.get('isActive'), bool):
            updates['is_active'] = body['isActive']
        if isinstance(body.get('offDate'), str):
            next_date = body['offDate'].strip()
            if not is_valid_off_date(next_date):
                raise OffDayError('Geçersiz tarih formatı', 400)
            updates['off_date'] = next_date

        try:
            off_day = self.repo.update(parsed_id, updates)
        except Exception as e:
            logger.error(f"Error updating delivery off day {parsed_id}: {e}")
            raise OffDayError('Güncellenemedi', 500)

        if not off_day:
            raise OffDayError('Off günü bulunamadı', 404)
        return off_day

    def delete_off_day(self, off_day_id: Any) -> None:
        parsed_id = parse_off_day_id(off_day_id)
        if not parsed_id:
            raise OffDayError('Geçersiz ID', 400)

        try:
            self.repo.delete(parsed_id)
        except Exception as e:
            logger.error(f"Error deleting delivery off day {parsed_id}: {e}")
            raise OffDayError('Silinemedi', 500)

    def cleanup_duplicates(self) -> Dict[str, Any]:
        """Delete inactive rows on dates that have more than one row"""
        try:
            records = self.repo.find_all(include_inactive=True)
        except Exception as e:
            logger.error(f"Could not fetch delivery off days for cleanup: {e}")
            raise OffDayError('Kayıtlar alınamadı', 500)

        by_date: Dict[str, List[DeliveryOffDay]] = {}
        for record in records:
            by_date.setdefault(record.off_date, []).append(record)

        duplicate_dates = 0
        to_delete: List[int] = []
        for off_date, rows in by_date.items():
            if len(rows) > 1:
                duplicate_dates += 1
                logger.info(f"{off_date} has {len(rows)} off day rows")
                to_delete.extend(row.id for row in rows if not row.is_active)

        deleted = 0
        for off_day_id in to_delete:
            try:
                self.repo.delete(off_day_id)
                deleted += 1
            except Exception as e:
                logger.error(f"Could not delete off day {off_day_id}: {e}")

        logger.info(f"Off day cleanup: {deleted} rows deleted over {duplicate_dates} dates")

        return {
            'success': True,
            'message': f'{deleted} duplicate kayıt temizlendi' if deleted > 0 else 'Temizlenecek kayıt yok',
            'stats': {
                'totalRecords': len(records),
                'duplicateDates': duplicate_dates,
                'deletedRecords': deleted,
            },
        }
