"""
Customer Authentication Service
- Register / login for storefront customers
- Session lookup from the signed cookie payload

Passwords are bcrypt hashes. Rows created before hashing was introduced
still hold the plain password; those are accepted once and re-hashed.

Author: TM3
Date: 2025-12-04
"""
import logging
from typing import Any, Dict, Optional

from passlib.context import CryptContext

from vadiler.domain.customer import Customer, generate_customer_id
from vadiler.repositories.customer_repository import CustomerRepository

logger = logging.getLogger(__name__)

# Password hashing context
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

MIN_PASSWORD_LENGTH = 6


class CustomerAuthError(Exception):
    """Login / registration rejected with a user-facing message"""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, stored: Optional[str]) -> bool:
    """
    Check a password against the stored value

    Returns False for empty stored values; falls back to a plain comparison
    for legacy rows that are not bcrypt hashes.
    """
    if not stored:
        return False
    if pwd_context.identify(stored) is None:
        return password == stored
    return pwd_context.verify(password, stored)


class CustomerAuthService:

    def __init__(self, customer_repo: Optional[CustomerRepository] = None):
        self.customer_repo = customer_repo or CustomerRepository()

    def login(self, email: Optional[str], password: Optional[str]) -> Customer:
        if not email or not password:
            raise CustomerAuthError('E-posta ve şifre gereklidir.', 400)

        customer = self.customer_repo.find_by_email(str(email).lower())
        if not customer or not verify_password(str(password), customer.password):
            raise CustomerAuthError('E-posta veya şifre hatalı.', 401)

        if customer.is_active is False:
            raise CustomerAuthError('Hesabınız devre dışı bırakılmış.', 403)

        if pwd_context.identify(customer.password) is None:
            # legacy plain-text row
            try:
                self.customer_repo.update_password(customer.id, hash_password(str(password)))
                logger.info(f"Upgraded legacy password for customer {customer.id}")
            except Exception as e:
                logger.warning(f"Could not upgrade legacy password for customer {customer.id}: {e}")

        return customer

    def register(self, data: Dict[str, Any]) -> Customer:
        email = data.get('email')
        name = data.get('name')
        phone = data.get('phone')
        password = data.get('password')

        if not email or not name or not phone or not password:
            raise CustomerAuthError('Tüm alanları doldurun.', 400)

        if len(str(password)) < MIN_PASSWORD_LENGTH:
            raise CustomerAuthError('Şifre en az 6 karakter olmalıdır.', 400)

        normalized_email = str(email).lower()
        if self.customer_repo.email_exists(normalized_email):
            raise CustomerAuthError('Bu e-posta adresi zaten kayıtlı.', 400)

        customer = self.customer_repo.create({
            'id': generate_customer_id(),
            'email': normalized_email,
            'name': name,
            'phone': phone,
            'password': hash_password(str(password)),
            'addresses': [],
            'orders': [],
            'favorites': [],
            'total_spent': 0,
            'order_count': 0,
            'last_order_date': None,
            'is_active': True,
            'notes': '',
            'tags': ['Yeni'],
        })
        logger.info(f"Registered customer {customer.id}")
        return customer

    def get_session_customer(self, customer_id: str) -> Optional[Customer]:
        try:
            return self.customer_repo.find_by_id(customer_id)
        except Exception as e:
            logger.error(f"Error fetching customer from session: {e}")
            return None
