"""Gateway configuration using Pydantic Settings"""
from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator
from typing import Optional
import os


class Settings(BaseSettings):
    """Gateway settings loaded from environment variables"""

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    # HTTP transport shared by all dispatchers
    HTTP_TIMEOUT_SECONDS: float = 30.0
    HTTP_CONNECT_TIMEOUT_SECONDS: float = 10.0
    HTTP_MAX_CONNECTIONS: int = 100
    HTTP_MAX_KEEPALIVE_CONNECTIONS: int = 20

    # APNS Configuration
    APNS_KEY_FILE: Optional[str] = None  # Path to .p8 auth key file
    APNS_PRIVATE_KEY: Optional[str] = None  # PEM text or bare base64 PKCS#8 body
    APNS_KEY_ID: Optional[str] = None  # 10-character key identifier
    APNS_TEAM_ID: Optional[str] = None  # 10-character team identifier
    APNS_BUNDLE_ID: Optional[str] = None  # App bundle ID (e.g., com.example.app)
    APNS_ENVIRONMENT: str = "production"
    APNS_TOKEN_MAX_AGE_SECONDS: int = 3000  # Apple rejects tokens older than 1 hour

    @field_validator('APNS_ENVIRONMENT', mode='after')
    @classmethod
    def validate_apns_environment(cls, v: str) -> str:
        """Validate APNS environment name."""
        valid = ['development', 'production']
        if v not in valid:
            raise ValueError(f"APNS_ENVIRONMENT must be one of {valid}")
        return v

    @field_validator('APNS_TOKEN_MAX_AGE_SECONDS', mode='after')
    @classmethod
    def validate_apns_token_max_age(cls, v: int) -> int:
        """Token age must stay under Apple's one hour limit."""
        if not 0 < v < 3600:
            raise ValueError("APNS_TOKEN_MAX_AGE_SECONDS must be between 1 and 3599")
        return v

    @property
    def apns_ready(self) -> bool:
        """Check if APNS is properly configured and ready to use."""
        has_key = bool(self.APNS_PRIVATE_KEY) or (
            self.APNS_KEY_FILE is not None and os.path.exists(self.APNS_KEY_FILE)
        )
        return (
            has_key
            and self.APNS_KEY_ID is not None
            and self.APNS_TEAM_ID is not None
            and self.APNS_BUNDLE_ID is not None
        )

    def apns_credential(self):
        """Build the APNS credential from settings."""
        from pushgate.push.models import APNSCredential

        if not self.apns_ready:
            raise ValueError("APNS is not configured")
        return APNSCredential(
            key_file=self.APNS_KEY_FILE if not self.APNS_PRIVATE_KEY else None,
            private_key=self.APNS_PRIVATE_KEY,
            key_id=self.APNS_KEY_ID,
            team_id=self.APNS_TEAM_ID,
            bundle_id=self.APNS_BUNDLE_ID,
        )

    # HMS Configuration
    HMS_CLIENT_ID: Optional[str] = None  # Huawei app (client) id
    HMS_CLIENT_SECRET: Optional[str] = None
    HMS_TOKEN_REFRESH_MARGIN_SECONDS: int = 300  # Renew this long before expiry

    @property
    def hms_ready(self) -> bool:
        """Check if HMS is properly configured and ready to use."""
        return bool(self.HMS_CLIENT_ID) and bool(self.HMS_CLIENT_SECRET)

    def hms_credential(self):
        """Build the HMS credential from settings."""
        from pushgate.push.models import HMSCredential

        if not self.hms_ready:
            raise ValueError("HMS is not configured")
        return HMSCredential(
            client_id=self.HMS_CLIENT_ID,
            client_secret=self.HMS_CLIENT_SECRET,
        )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
    )


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide settings instance."""
    return Settings()
