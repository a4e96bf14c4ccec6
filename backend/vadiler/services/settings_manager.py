"""
Settings Manager
Site settings stored in site_settings, read through an in-process TTL cache

Purpose:
- Serve storefront settings (site, delivery, payment, promotions, social, seo)
- Fall back to built-in defaults when the table cannot be read
- Invalidate cached entries when an admin changes a value

Author: TM3
Date: 2025-12-04
"""
import copy
import logging
import time
from typing import Any, Dict, Optional, Tuple

from vadiler.repositories.settings_repository import SettingsRepository

logger = logging.getLogger(__name__)

SETTINGS_CATEGORIES = ['site', 'delivery', 'payment', 'promotions', 'social', 'seo']

# Used when site_settings is unreachable or a key is missing
DEFAULT_SETTINGS: Dict[str, Dict[str, Any]] = {
    'site': {
        'name': 'Vadiler Çiçekçilik',
        'phone': '0850 307 4876',
        'address': 'İstanbul, Türkiye',
    },
    'delivery': {
        'freeDeliveryThreshold': 500,
        'standardDeliveryFee': 49,
        'expressDeliveryFee': 99,
    },
    'payment': {
        'installments': [1],
    },
    'promotions': {},
    'social': {
        'instagram': 'https://instagram.com/vadilercom',
        'facebook': 'https://facebook.com/vadilercom',
        'twitter': 'https://twitter.com/vadilercom',
        'whatsapp': '908503074876',
    },
    'seo': {},
}


class SettingsManager:
    """
    Cached access to site_settings

    Cache keys: '<category>.<key>' for single values and
    'category:<category>:<public_only>' for whole categories.
    """

    # Cache TTL in seconds (5 minutes)
    CACHE_TTL = 300

    def __init__(
        self,
        repo: Optional[SettingsRepository] = None,
        defaults: Optional[Dict[str, Dict[str, Any]]] = None
    ):
        self.repo = repo or SettingsRepository()
        self.defaults = defaults if defaults is not None else DEFAULT_SETTINGS
        self._cache: Dict[str, Tuple[Any, float]] = {}

    def _cache_get(self, cache_key: str) -> Tuple[bool, Any]:
        entry = self._cache.get(cache_key)
        if entry is None:
            return False, None

        value, expiry = entry
        if time.time() < expiry:
            return True, value

        del self._cache[cache_key]
        return False, None

    def _cache_set(self, cache_key: str, value: Any) -> None:
        self._cache[cache_key] = (value, time.time() + self.CACHE_TTL)

    @staticmethod
    def _category_key(category: str, public_only: bool) -> str:
        return f"category:{category}:{str(public_only).lower()}"

    def _fallback(self, category: str, key: str, default: Any = None) -> Any:
        category_data = self.defaults.get(category) or {}
        if key in category_data:
            return copy.deepcopy(category_data[key])
        return default

    def _category_fallback(self, category: str) -> Dict[str, Any]:
        return copy.deepcopy(self.defaults.get(category) or {})

    def get(self, category: str, key: str, default: Any = None) -> Any:
        cache_key = f"{category}.{key}"
        hit, value = self._cache_get(cache_key)
        if hit:
            return copy.deepcopy(value)

        try:
            row = self.repo.find_value(category, key)
        except Exception as e:
            logger.error(f"Error fetching setting {category}.{key}: {e}")
            return self._fallback(category, key, default)

        if not row:
            return self._fallback(category, key, default)

        self._cache_set(cache_key, row['value'])
        return copy.deepcopy(row['value'])

    def get_category(self, category: str, public_only: bool = True) -> Dict[str, Any]:
        cache_key = self._category_key(category, public_only)
        hit, value = self._cache_get(cache_key)
        if hit:
            return copy.deepcopy(value)

        try:
            rows = self.repo.find_category(category, public_only=public_only)
        except Exception as e:
            logger.error(f"Error fetching settings category {category}: {e}")
            return self._category_fallback(category)

        settings = {row['key']: row['value'] for row in rows}
        self._cache_set(cache_key, settings)
        return copy.deepcopy(settings)

    def get_all(self, public_only: bool = True) -> Dict[str, Dict[str, Any]]:
        return {category: self.get_category(category, public_only) for category in SETTINGS_CATEGORIES}

    def set(self, category: str, key: str, value: Any) -> Dict[str, Any]:
        """Upsert one value; errors propagate to the caller"""
        try:
            row = self.repo.upsert(category, key, value)
        except Exception as e:
            logger.error(f"Error updating setting {category}.{key}: {e}")
            raise

        self._cache.pop(f"{category}.{key}", None)
        self._cache.pop(self._category_key(category, True), None)
        self._cache.pop(self._category_key(category, False), None)
        return row

    def clear_cache(self) -> None:
        self._cache.clear()

    def clear_category_cache(self, category: str) -> None:
        for cache_key in list(self._cache):
            if cache_key.startswith(f"{category}.") or cache_key.startswith(f"category:{category}:"):
                del self._cache[cache_key]


# Singleton instance for use across the application
_settings_manager: Optional[SettingsManager] = None


def get_settings_manager() -> SettingsManager:
    """Get or create the SettingsManager singleton"""
    global _settings_manager
    if _settings_manager is None:
        _settings_manager = SettingsManager()
    return _settings_manager
