from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field, HttpUrl
from pydantic_settings import BaseSettings, SettingsConfigDict


class TokenValidationSettings(BaseModel):
    """Every check applied to inbound bearer tokens.

    Each toggle is listed so that turning a check off is an explicit,
    reviewable setting rather than a library default.
    """

    validate_issuer: bool = True
    validate_scope: bool = True
    validate_lifetime: bool = True
    validate_signature: bool = True
    validate_audience: bool = False

    allowed_issuers: list[str] = Field(default_factory=list)
    allowed_scopes: list[str] = Field(default_factory=list)
    audience: str | None = None
    algorithms: list[str] = Field(default_factory=lambda: ["RS256"])
    leeway_seconds: int = 0

    signing_key: str | None = None
    jwks_url: str | None = None
    authority: str | None = None
    jwks_cache_seconds: int = 3600
    jwks_min_refresh_seconds: float = 30.0


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        protected_namespaces=(),
    )

    env: Literal["local", "prod", "test"] = Field(default="local", alias="ENV")
    debug: bool = Field(default=False, alias="DEBUG")
    app_name: str = Field(default="FileStorageAPI", alias="APP_NAME")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    s3_endpoint: HttpUrl | None = Field(default=None, alias="S3_ENDPOINT_URL")
    s3_access_key: str = Field(default="change-me", alias="S3_ACCESS_KEY")
    s3_secret_key: str = Field(default="change-me", alias="S3_SECRET_KEY")
    s3_region: str | None = Field(default=None, alias="S3_REGION")
    s3_addressing_style: Literal["auto", "path", "virtual"] = Field(
        default="path", alias="S3_ADDRESSING_STYLE"
    )
    s3_connect_timeout: float = Field(default=5.0, alias="S3_CONNECT_TIMEOUT")
    s3_read_timeout: float = Field(default=60.0, alias="S3_READ_TIMEOUT")
    # Uploads are not safe to replay blindly, so botocore retries are off by default.
    s3_max_attempts: int = Field(default=1, ge=1, alias="S3_MAX_ATTEMPTS")

    max_upload_bytes: int = Field(default=5 * 1024**3, gt=0, alias="MAX_UPLOAD_BYTES")
    download_chunk_size: int = Field(default=64 * 1024, gt=0, alias="DOWNLOAD_CHUNK_SIZE")
    presign_concurrency: int = Field(default=16, ge=1, alias="PRESIGN_CONCURRENCY")
    expose_error_details: bool = Field(default=False, alias="EXPOSE_ERROR_DETAILS")
    health_check_timeout_seconds: float = Field(
        default=5.0, gt=0, alias="HEALTH_CHECK_TIMEOUT_SECONDS"
    )

    auth_authority: str | None = Field(default=None, alias="AUTH_AUTHORITY")
    auth_jwks_url: str | None = Field(default=None, alias="AUTH_JWKS_URL")
    auth_signing_key: str | None = Field(default=None, alias="AUTH_SIGNING_KEY")
    auth_algorithms: list[str] = Field(default_factory=lambda: ["RS256"], alias="AUTH_ALGORITHMS")
    auth_allowed_issuers: list[str] = Field(default_factory=list, alias="AUTH_ALLOWED_ISSUERS")
    auth_allowed_scopes: list[str] = Field(default_factory=list, alias="AUTH_ALLOWED_SCOPES")
    auth_audience: str | None = Field(default=None, alias="AUTH_AUDIENCE")
    auth_validate_issuer: bool = Field(default=True, alias="AUTH_VALIDATE_ISSUER")
    auth_validate_scope: bool = Field(default=True, alias="AUTH_VALIDATE_SCOPE")
    auth_validate_lifetime: bool = Field(default=True, alias="AUTH_VALIDATE_LIFETIME")
    auth_validate_signature: bool = Field(default=True, alias="AUTH_VALIDATE_SIGNATURE")
    auth_validate_audience: bool = Field(default=False, alias="AUTH_VALIDATE_AUDIENCE")
    auth_leeway_seconds: int = Field(default=0, ge=0, alias="AUTH_LEEWAY_SECONDS")
    auth_jwks_cache_seconds: int = Field(default=3600, ge=0, alias="AUTH_JWKS_CACHE_SECONDS")
    auth_jwks_min_refresh_seconds: float = Field(
        default=30.0, ge=0, alias="AUTH_JWKS_MIN_REFRESH_SECONDS"
    )

    @property
    def token_validation(self) -> TokenValidationSettings:
        return TokenValidationSettings(
            validate_issuer=self.auth_validate_issuer,
            validate_scope=self.auth_validate_scope,
            validate_lifetime=self.auth_validate_lifetime,
            validate_signature=self.auth_validate_signature,
            validate_audience=self.auth_validate_audience,
            allowed_issuers=self.auth_allowed_issuers,
            allowed_scopes=self.auth_allowed_scopes,
            audience=self.auth_audience,
            algorithms=self.auth_algorithms,
            leeway_seconds=self.auth_leeway_seconds,
            signing_key=self.auth_signing_key,
            jwks_url=self.auth_jwks_url,
            authority=self.auth_authority,
            jwks_cache_seconds=self.auth_jwks_cache_seconds,
            jwks_min_refresh_seconds=self.auth_jwks_min_refresh_seconds,
        )


@lru_cache
def get_settings() -> Settings:
    return Settings()
