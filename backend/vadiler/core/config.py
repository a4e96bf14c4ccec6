"""
Configuración centralizada de la aplicación

Author: TM3
Updated: 2025-12-04 (storefront: iyzico, session cookie, SMTP)
"""
from pydantic_settings import BaseSettings
from typing import List, Optional


class Settings(BaseSettings):
    """Configuración de la aplicación"""

    # API Settings
    API_TITLE: str = "Vadiler API"
    API_VERSION: str = "1.0.0"
    API_DESCRIPTION: str = "Çiçek mağazası ve yönetim paneli API'si"
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str = ""
    SUPABASE_URL: str = ""
    SUPABASE_SERVICE_ROLE_KEY: str = ""

    # CORS - Can be string (comma-separated) or JSON array
    # Example: "http://localhost:3000,https://vadiler.com" or '["http://localhost:3000"]'
    ALLOWED_ORIGINS: Optional[str] = "http://localhost:3000"

    # Public storefront URL (payment redirects land here)
    APP_URL: str = "http://localhost:3000"

    # iyzico
    IYZICO_API_KEY: str = ""
    IYZICO_SECRET_KEY: str = ""
    IYZICO_BASE_URL: str = "https://sandbox-api.iyzipay.com"

    # Auth
    AUTH_SECRET: str = ""          # admin panel JWT (HS256)
    AUTH_SESSION_SECRET: str = ""  # customer session cookie
    CRON_SECRET: str = ""

    # SMTP
    SMTP_HOST: str = "eposta.ni.net.tr"
    SMTP_PORT: int = 465
    SMTP_SECURE: Optional[bool] = None
    SMTP_USER: str = ""
    SMTP_PASSWORD: str = ""

    def get_allowed_origins(self) -> List[str]:
        """Parse ALLOWED_ORIGINS string into list"""
        if not self.ALLOWED_ORIGINS:
            return ["http://localhost:3000"]

        # Try JSON parse first (for array format)
        import json
        try:
            origins = json.loads(self.ALLOWED_ORIGINS)
            if isinstance(origins, list):
                return origins
        except (json.JSONDecodeError, ValueError):
            pass

        # Fall back to comma-separated string
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",")]

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
