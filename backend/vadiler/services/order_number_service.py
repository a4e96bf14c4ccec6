"""
Order Number Service - 6-digit sequential public order numbers

Numbers come from a Postgres sequence exposed as Supabase RPC functions:
get_next_order_number, get_order_number_sequence_state,
set_order_number_sequence(seq_value).

Author: TM3
Date: 2025-12-04
"""
import logging
from typing import Any, Dict, Optional

from vadiler.core.database import get_supabase
from vadiler.domain.serialization import now_iso
from vadiler.repositories.order_repository import OrderRepository

logger = logging.getLogger(__name__)

MIN_ORDER_NUMBER = 100000
MAX_ORDER_NUMBER = 999999
DEFAULT_START_NUMBER = 100001


def is_valid_order_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    try:
        number = float(value)
    except (TypeError, ValueError):
        return False
    return MIN_ORDER_NUMBER <= number <= MAX_ORDER_NUMBER


class OrderNumberService:

    def __init__(self, supabase_client=None, order_repo: Optional[OrderRepository] = None):
        self._client = supabase_client
        self.order_repo = order_repo or OrderRepository()

    @property
    def client(self):
        if self._client is None:
            self._client = get_supabase()
        return self._client

    def _total_orders(self) -> int:
        try:
            return self.order_repo.count()
        except Exception as e:
            logger.warning(f"Could not count orders: {e}")
            return 0

    def generate(self) -> int:
        response = self.client.rpc("get_next_order_number").execute()
        if response.data is None:
            raise Exception("Failed to generate order number")
        return int(response.data)

    def get_counter_info(self) -> Dict[str, Any]:
        next_number = DEFAULT_START_NUMBER
        try:
            response = self.client.rpc("get_order_number_sequence_state").execute()
            rows = response.data if isinstance(response.data, list) else []
            if rows and rows[0].get('next_value') is not None:
                next_number = int(rows[0]['next_value'])
        except Exception as e:
            logger.warning(f"Could not read order number sequence state: {e}")

        return {
            'nextOrderNumber': next_number,
            'lastGeneratedAt': now_iso(),
            'totalOrders': self._total_orders(),
        }

    def reset_counter(self, start_number: int = DEFAULT_START_NUMBER) -> Dict[str, Any]:
        self.client.rpc("set_order_number_sequence", {"seq_value": start_number}).execute()
        logger.info(f"Order number sequence reset to {start_number}")
        return {
            'nextOrderNumber': start_number,
            'lastGeneratedAt': now_iso(),
            'totalOrders': self._total_orders(),
        }
