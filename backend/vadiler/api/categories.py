"""
Categories API

Endpoints:
- GET    /api/categories          - Category list with live product counts
- POST   /api/categories          - Create (admin)
- PUT    /api/categories          - Update (admin)
- DELETE /api/categories?id=      - Delete an empty category (admin)
- GET    /api/categories/{id}     - Category page data with cover defaults

Author: TM3
Date: 2025-12-04
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from vadiler.api.deps import read_json_body
from vadiler.core.auth import TokenUser, require_admin
from vadiler.services.category_service import CategoryError, CategoryService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/categories", tags=["Categories"])


def get_category_service() -> CategoryService:
    return CategoryService()


@router.get("")
async def list_categories(
    include_inactive: bool = Query(False, alias="all"),
    has_products: bool = Query(False, alias="hasProducts"),
    service: CategoryService = Depends(get_category_service)
):
    try:
        return service.list_categories(include_inactive=include_inactive, only_with_products=has_products)
    except Exception as e:
        logger.error(f"Error fetching categories: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch categories")


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_category(
    request: Request,
    user: TokenUser = Depends(require_admin),
    service: CategoryService = Depends(get_category_service)
):
    body = await read_json_body(request)
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="Geçersiz istek gövdesi")

    try:
        data = service.create_category(body)
    except CategoryError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error(f"Error creating category: {e}")
        raise HTTPException(status_code=500, detail="Kategori oluşturulamadı")

    return {"success": True, "data": data, "message": "Kategori başarıyla oluşturuldu"}


@router.put("")
async def update_category(
    request: Request,
    user: TokenUser = Depends(require_admin),
    service: CategoryService = Depends(get_category_service)
):
    body = await read_json_body(request)
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="Geçersiz istek gövdesi")

    try:
        data = service.update_category(body)
    except CategoryError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error(f"Error updating category: {e}")
        raise HTTPException(status_code=500, detail="Kategori güncellenemedi")

    return {"success": True, "data": data, "message": "Kategori başarıyla güncellendi"}


@router.delete("")
async def delete_category(
    category_id: Optional[str] = Query(None, alias="id"),
    user: TokenUser = Depends(require_admin),
    service: CategoryService = Depends(get_category_service)
):
    try:
        service.delete_category(category_id)
    except CategoryError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error(f"Error deleting category {category_id}: {e}")
        raise HTTPException(status_code=500, detail="Kategori silinemedi")

    return {"success": True, "message": "Kategori başarıyla silindi"}


@router.get("/{category_id}")
async def get_category(
    category_id: int,
    service: CategoryService = Depends(get_category_service)
):
    try:
        return {"success": True, "data": service.get_category(category_id)}
    except CategoryError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error(f"Error fetching category {category_id}: {e}")
        raise HTTPException(status_code=500, detail="Kategori yüklenirken hata oluştu")
