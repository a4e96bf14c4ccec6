"""
Public site settings API

GET /api/settings?category=  - public settings of one category, or all categories

Author: TM3
Date: 2025-12-04
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from vadiler.services.settings_manager import SettingsManager, get_settings_manager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/settings", tags=["Settings"])


@router.get("")
async def get_public_settings(
    category: Optional[str] = Query(None),
    manager: SettingsManager = Depends(get_settings_manager)
):
    try:
        if category:
            return {"category": category, "settings": manager.get_category(category, public_only=True)}
        return {"settings": manager.get_all(public_only=True)}
    except Exception as e:
        logger.error(f"Error fetching settings: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch settings")
