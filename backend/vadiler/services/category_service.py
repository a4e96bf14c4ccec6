"""
Category Service
Admin category management and storefront category listing

Product counts come from the products table (primary category plus
occasion_tags), not from categories.product_count.

Author: TM3
Date: 2025-12-04
"""
import logging
import math
from typing import Any, Dict, List, Optional, Tuple

import psycopg2

from vadiler.domain.category import Category, pinned_sort_key, slugify
from vadiler.repositories.category_repository import CategoryRepository, is_duplicate_primary_key
from vadiler.repositories.product_repository import ProductRepository

logger = logging.getLogger(__name__)

SLUG_ATTEMPTS = 20
INSERT_ATTEMPTS = 5


class CategoryError(Exception):

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def count_products(product_rows: List[Dict[str, Any]]) -> Tuple[Dict[str, int], Dict[str, str]]:
    """
    Product counts and first product image per category slug

    A product counts for its primary category and every slug in occasion_tags.
    """
    counts: Dict[str, int] = {}
    images: Dict[str, str] = {}

    for row in product_rows:
        image = row.get('image')
        slugs = []
        if isinstance(row.get('category'), str) and row['category']:
            slugs.append(row['category'])
        tags = row.get('occasion_tags')
        if isinstance(tags, list):
            slugs.extend(tag for tag in tags if isinstance(tag, str) and tag)

        for slug in slugs:
            counts[slug] = counts.get(slug, 0) + 1
            if isinstance(image, str) and image and slug not in images:
                images[slug] = image

    return counts, images


class CategoryService:

    def __init__(
        self,
        category_repo: Optional[CategoryRepository] = None,
        product_repo: Optional[ProductRepository] = None,
    ):
        self.category_repo = category_repo or CategoryRepository()
        self.product_repo = product_repo or ProductRepository()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_categories(self, include_inactive: bool = False, only_with_products: bool = False) -> Dict[str, Any]:
        categories = self.category_repo.find_all(include_inactive=include_inactive)
        counts, images = count_products(self.product_repo.find_category_rows())

        formatted = []
        for category in categories:
            data = category.to_api(counts.get(category.slug, 0))
            data['image'] = category.image or images.get(category.slug, '')
            formatted.append(data)

        if only_with_products:
            formatted = [c for c in formatted if c['productCount'] > 0]

        formatted.sort(key=pinned_sort_key)

        return {'categories': formatted, 'total': len(categories)}

    def get_category(self, category_id: int) -> Dict[str, Any]:
        category = self.category_repo.find_by_id(category_id)
        if not category:
            raise CategoryError('Kategori bulunamadı', 404)

        product_count = self.product_repo.count_in_category(category.slug, include_secondary=False)
        return category.to_detail(product_count)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def find_unique_slug(self, base_slug: str) -> str:
        """base_slug, then base_slug-2, base_slug-3, ..."""
        for attempt in range(SLUG_ATTEMPTS):
            candidate = base_slug if attempt == 0 else f"{base_slug}-{attempt + 1}"
            if not self.category_repo.slug_exists(candidate):
                return candidate

        raise CategoryError('Could not generate unique category slug', 500)

    def create_category(self, data: Dict[str, Any]) -> Dict[str, Any]:
        name = data.get('name').strip() if isinstance(data.get('name'), str) else ''
        if not name:
            raise CategoryError('İsim zorunludur', 400)

        raw_slug = data.get('slug')
        base_slug = raw_slug.strip() if isinstance(raw_slug, str) and raw_slug.strip() else slugify(name)
        slug = self.find_unique_slug(base_slug)

        provided_order = data.get('order')
        if _is_number(provided_order) and math.isfinite(provided_order):
            order = provided_order
        else:
            try:
                order = self.category_repo.next_order()
            except Exception as e:
                logger.error(f"Error getting max category order: {e}")
                order = 1

        if isinstance(data.get('isActive'), bool):
            is_active = data['isActive']
        elif isinstance(data.get('is_active'), bool):
            is_active = data['is_active']
        else:
            is_active = True

        try:
            next_id = self.category_repo.next_id()
        except Exception as e:
            logger.error(f"Error getting next category id: {e}")
            next_id = 1

        insert_data = {
            'id': next_id,
            'name': name,
            'slug': slug,
            'description': data['description'] if isinstance(data.get('description'), str) else '',
            'image': data['image'] if isinstance(data.get('image'), str) else '',
            'product_count': 0,
            'order': order,
            'is_active': is_active,
        }

        # The id sequence can lag behind; bump the id on primary-key collisions
        last_error: Optional[Exception] = None
        for attempt in range(INSERT_ATTEMPTS):
            candidate = {**insert_data, 'id': next_id + attempt}
            try:
                created = self.category_repo.insert(candidate)
            except psycopg2.Error as e:
                last_error = e
                if is_duplicate_primary_key(e, 'categories_pkey'):
                    continue
                break

            logger.info(f"Category created: {created.id} ({created.slug})")
            return created.to_api(0)

        logger.error(f"Error creating category: {last_error}")
        raise CategoryError('Kategori oluşturulamadı', 500)

    def update_category(self, data: Dict[str, Any]) -> Dict[str, Any]:
        category_id = data.get('id')
        if not _is_number(category_id):
            raise CategoryError('Kategori ID zorunludur', 400)

        existing = self.category_repo.find_by_id(category_id)
        if not existing:
            raise CategoryError('Kategori bulunamadı', 404)

        fields: Dict[str, Any] = {}
        if isinstance(data.get('name'), str):
            fields['name'] = data['name']
        if isinstance(data.get('description'), str):
            fields['description'] = data['description']
        if isinstance(data.get('image'), str):
            fields['image'] = data['image']
        if _is_number(data.get('order')):
            fields['order'] = data['order']
        if isinstance(data.get('isActive'), bool):
            fields['is_active'] = data['isActive']
        if _is_number(data.get('productCount')):
            fields['product_count'] = data['productCount']

        raw_slug = data.get('slug')
        new_name = data.get('name')
        if isinstance(raw_slug, str) and raw_slug.strip():
            desired = raw_slug.strip()
            if desired != existing.slug:
                fields['slug'] = self.find_unique_slug(desired)
        elif isinstance(new_name, str) and new_name.strip() and new_name != existing.name:
            fields['slug'] = self.find_unique_slug(slugify(new_name))

        try:
            updated = self.category_repo.update(category_id, fields)
        except Exception as e:
            logger.error(f"Error updating category {category_id}: {e}")
            raise CategoryError('Kategori güncellenemedi', 500)

        if not updated:
            raise CategoryError('Kategori bulunamadı', 404)

        logger.info(f"Category updated: {updated.id}")
        return updated.to_api(self.product_repo.count_in_category(updated.slug))

    def delete_category(self, category_id: Any) -> None:
        if category_id in (None, ''):
            raise CategoryError('Kategori ID zorunludur', 400)

        try:
            category_id = int(category_id)
        except (TypeError, ValueError):
            raise CategoryError('Kategori bulunamadı', 404)

        category = self.category_repo.find_by_id(category_id)
        if not category:
            raise CategoryError('Kategori bulunamadı', 404)

        product_count = self.product_repo.count_in_category(category.slug, include_secondary=False)
        if product_count > 0:
            raise CategoryError(
                f'Bu kategoride {product_count} ürün var. Önce ürünleri başka kategoriye taşıyın.',
                400
            )

        try:
            self.category_repo.delete(category_id)
        except Exception as e:
            logger.error(f"Error deleting category {category_id}: {e}")
            raise CategoryError('Kategori silinemedi', 500)

        logger.info(f"Category deleted: {category_id}")
