from __future__ import annotations

from typing import ClassVar, final

from pydantic import AliasChoices, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


_DEFAULT_ALLOWED_MIMETYPES = ",".join(
    [
        "image/jpeg",
        "image/jpg",
        "image/png",
        "image/gif",
        "image/webp",
        "text/plain",
        "text/csv",
        "text/html",
        "text/markdown",
        "application/json",
        "application/pdf",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ]
)


# scrypt cost range the sealed archive accepts (n = 2**log2_n).
ARCHIVE_SCRYPT_MIN_LOG2_N = 10
ARCHIVE_SCRYPT_MAX_LOG2_N = 18


def _split_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [x.strip() for x in value.split(",") if x.strip()]


@final
class Settings(BaseSettings):
    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )
    app_name: str = "Vault Backend"
    api_prefix: str = "/api/v1"

    # Environment (ENVIRONMENT): development | production
    environment: str = "development"

    database_url: str = "sqlite:///./dev.db"
    log_level: str = "INFO"

    # Primary env: CORS_ALLOW_ORIGINS; also accept CORS_ORIGINS as alias.
    cors_allow_origins: str = Field(
        default="*",
        validation_alias=AliasChoices("CORS_ALLOW_ORIGINS", "CORS_ORIGINS"),
    )

    # Attachments
    attachments_local_dir: str = ".data/attachments"
    attachments_max_size_bytes: int = 25 * 1024 * 1024
    attachments_allowed_mimetypes: str = _DEFAULT_ALLOWED_MIMETYPES

    # Sealed archive KDF cost (scrypt n = 2**ARCHIVE_SCRYPT_LOG2_N, r=8, p=1).
    # Tests lower this; production must keep it >= 14.
    archive_scrypt_log2_n: int = Field(
        default=15, ge=ARCHIVE_SCRYPT_MIN_LOG2_N, le=ARCHIVE_SCRYPT_MAX_LOG2_N
    )

    # bcrypt cost for attachment password hashes (4..31). Tests lower this.
    attachments_bcrypt_rounds: int = Field(default=12, ge=4, le=31)

    # S3 compatible object storage; local storage is used unless all four are set.
    s3_endpoint_url: str = ""
    s3_region: str = ""
    s3_bucket: str = ""
    s3_access_key_id: str = ""
    s3_secret_access_key: str = ""
    s3_force_path_style: bool = False

    # Validate production settings early to fail fast on unsafe defaults.
    @model_validator(mode="after")
    def _validate_production_settings(self) -> "Settings":  # pyright: ignore[reportUnusedFunction]
        if self.environment.strip().lower() != "production":
            return self

        errors: list[str] = []

        cors_v = self.cors_allow_origins.strip()
        if not cors_v or cors_v == "*":
            errors.append("CORS_ALLOW_ORIGINS must be explicit (not '*') in production")

        if self.archive_scrypt_log2_n < 14:
            errors.append("ARCHIVE_SCRYPT_LOG2_N must be >= 14 in production")
        if self.attachments_bcrypt_rounds < 10:
            errors.append("ATTACHMENTS_BCRYPT_ROUNDS must be >= 10 in production")

        # If any S3 setting is provided, require the full set to avoid silently falling back to local storage.
        s3_fields = {
            "S3_BUCKET": self.s3_bucket.strip(),
            "S3_ENDPOINT_URL": self.s3_endpoint_url.strip(),
            "S3_ACCESS_KEY_ID": self.s3_access_key_id.strip(),
            "S3_SECRET_ACCESS_KEY": self.s3_secret_access_key.strip(),
        }
        if any(v for v in s3_fields.values()) and any(not v for v in s3_fields.values()):
            missing = ",".join([k for k, v in s3_fields.items() if not v])
            errors.append(f"S3 config incomplete in production; missing: {missing}")

        if errors:
            raise ValueError("Invalid production settings: " + "; ".join(errors))
        return self

    def cors_origins_list(self) -> list[str]:
        v = self.cors_allow_origins.strip()
        if not v:
            return []
        if v == "*":
            return ["*"]
        return _split_csv(v)

    def allowed_mimetypes(self) -> set[str]:
        return {m.lower() for m in _split_csv(self.attachments_allowed_mimetypes)}

    def s3_configured(self) -> bool:
        return bool(
            self.s3_bucket.strip()
            and self.s3_endpoint_url.strip()
            and self.s3_access_key_id.strip()
            and self.s3_secret_access_key.strip()
        )

    def security_warnings(self) -> list[str]:
        warnings: list[str] = []
        if self.cors_allow_origins.strip() == "*":
            warnings.append("CORS_ALLOW_ORIGINS='*' is permissive")
        if self.archive_scrypt_log2_n < 14:
            warnings.append("ARCHIVE_SCRYPT_LOG2_N is below the recommended minimum of 14")
        if self.attachments_bcrypt_rounds < 10:
            warnings.append("ATTACHMENTS_BCRYPT_ROUNDS is below the recommended minimum of 10")
        return warnings


settings = Settings()
