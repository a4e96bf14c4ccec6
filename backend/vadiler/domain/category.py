"""
Category Domain Model

Storefront product categories (çiçek türleri, özel günler, kampanyalar).
"""
import re
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, ConfigDict

# Categories always listed first, in this order
PINNED_CATEGORY_SLUGS = ['haftanin-kampanyalari', 'dogum-gunu-hediyeleri']

_TURKISH_ASCII = str.maketrans({
    'ğ': 'g',
    'ü': 'u',
    'ş': 's',
    'ı': 'i',
    'ö': 'o',
    'ç': 'c',
})


def slugify(name: str) -> str:
    """
    Turkish-aware slug: 'Doğum Günü Hediyeleri' -> 'dogum-gunu-hediyeleri'

    Falls back to 'kategori' when nothing usable is left.
    """
    slug = (name or '').lower().translate(_TURKISH_ASCII)
    slug = re.sub(r'[^a-z0-9]+', '-', slug)
    slug = slug.strip('-')
    return slug or 'kategori'


def pinned_sort_key(category: dict):
    slug = category.get('slug')
    if slug in PINNED_CATEGORY_SLUGS:
        return (0, PINNED_CATEGORY_SLUGS.index(slug), 0)
    return (1, 0, category.get('order') or 0)


class Category(BaseModel):
    id: int
    name: str
    slug: str
    description: Optional[str] = ''
    image: Optional[str] = ''
    order: Optional[int] = Field(0)
    product_count: Optional[int] = Field(0)
    is_active: Optional[bool] = True

    cover_type: Optional[str] = None
    cover_image: Optional[str] = None
    cover_video: Optional[str] = None
    cover_mobile_image: Optional[str] = None
    cover_overlay: Optional[str] = None
    cover_cta_text: Optional[str] = None
    cover_subtitle: Optional[str] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True, extra='ignore')

    def to_api(self, product_count: int) -> dict:
        """List/create/update representation (raw columns plus camelCase aliases)"""
        data = self.model_dump(mode='json')
        data.update({
            'productCount': product_count,
            'isActive': self.is_active,
            'createdAt': data.get('created_at'),
            'updatedAt': data.get('updated_at'),
        })
        return data

    def to_detail(self, product_count: int) -> dict:
        """Single category page representation with cover defaults"""
        image = self.image or ''
        fallback_cover_type = 'video' if self.cover_video else 'image'
        return {
            'id': self.id,
            'name': self.name,
            'slug': self.slug,
            'description': self.description or '',
            'image': image,
            'coverType': self.cover_type or fallback_cover_type,
            'coverImage': self.cover_image or image,
            'coverVideo': self.cover_video or '',
            'coverMobileImage': self.cover_mobile_image or '',
            'coverOverlay': self.cover_overlay or 'dark',
            'coverCtaText': self.cover_cta_text or 'Keşfet',
            'coverSubtitle': self.cover_subtitle or '',
            'productCount': product_count,
            'isActive': self.is_active,
            'createdAt': self.created_at.isoformat() if self.created_at else None,
            'updatedAt': self.updated_at.isoformat() if self.updated_at else None,
        }
