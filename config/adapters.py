"""
설정 어댑터

메일 동기화 엔진의 환경별 설정을 Pydantic Settings로 관리합니다.
"""

import os
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.domain.ports import ConfigPort


class BaseConfig(BaseSettings, ConfigPort):
    """기본 설정 클래스"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # 환경 설정
    environment: str = Field(default="development")
    debug: bool = Field(default=False)

    # 데이터베이스 설정
    database_url: str = Field(...)

    # 암호화 설정
    encryption_key: str = Field(...)

    # Gmail API 설정
    gmail_client_id: str = Field(default="")
    gmail_client_secret: str = Field(default="")
    gmail_api_base_url: str = Field(default="https://gmail.googleapis.com/gmail/v1")
    gmail_token_url: str = Field(default="https://oauth2.googleapis.com/token")
    gmail_pubsub_topic: Optional[str] = Field(default=None)

    # 통합 제공자 API 설정
    unified_api_key: str = Field(default="")
    unified_api_base_url: str = Field(default="https://api.us.nylas.com/v3")
    unified_webhook_secret: Optional[str] = Field(default=None)

    # 동기화 정책
    prefer_unified: bool = Field(default=False)
    strict_unimplemented_providers: bool = Field(default=False)
    default_conflict_resolution: Optional[str] = Field(default=None)
    sync_max_emails: int = Field(default=100, ge=1)

    # 제공자 호출 설정
    provider_timeout_seconds: float = Field(default=30.0)
    provider_max_retries: int = Field(default=3, ge=1)
    provider_retry_base_delay: float = Field(default=1.0, ge=0)

    # 웹훅 설정
    webhook_base_url: str = Field(default="http://localhost:5000")

    # 로깅 설정
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    # 웹 서버 설정
    web_host: str = Field(default="0.0.0.0")
    web_port: int = Field(default=5000)
    web_workers: int = Field(default=1)

    @field_validator("encryption_key")
    @classmethod
    def validate_encryption_key(cls, v):
        """암호화 키 검증"""
        if len(v) < 32:
            # 32바이트 미만이면 패딩
            v = v.ljust(32, '0')
        elif len(v) > 32:
            v = v[:32]
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        """로그 레벨 검증"""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"로그 레벨은 {valid_levels} 중 하나여야 합니다")
        return v.upper()

    @field_validator("default_conflict_resolution")
    @classmethod
    def validate_default_conflict_resolution(cls, v):
        """기본 충돌 해결 정책 검증"""
        if v is None or v == "":
            return None
        if v.lower() not in ("local", "remote", "merge"):
            raise ValueError("충돌 해결 정책은 local, remote, merge 중 하나여야 합니다")
        return v.lower()

    @field_validator("webhook_base_url", "gmail_api_base_url", "unified_api_base_url")
    @classmethod
    def strip_trailing_slash(cls, v):
        return v.rstrip("/")

    # ConfigPort 인터페이스 구현
    def get_environment(self) -> str:
        return self.environment

    def is_debug(self) -> bool:
        return self.debug

    def get_database_url(self) -> str:
        return self.database_url

    def get_encryption_key(self) -> str:
        return self.encryption_key

    def get_gmail_client_id(self) -> str:
        return self.gmail_client_id

    def get_gmail_client_secret(self) -> str:
        return self.gmail_client_secret

    def get_gmail_api_base_url(self) -> str:
        return self.gmail_api_base_url

    def get_gmail_token_url(self) -> str:
        return self.gmail_token_url

    def get_gmail_pubsub_topic(self) -> Optional[str]:
        return self.gmail_pubsub_topic

    def get_unified_api_key(self) -> str:
        return self.unified_api_key

    def get_unified_api_base_url(self) -> str:
        return self.unified_api_base_url

    def get_unified_webhook_secret(self) -> Optional[str]:
        return self.unified_webhook_secret

    def is_unified_preferred(self) -> bool:
        return self.prefer_unified

    def is_strict_unimplemented_providers(self) -> bool:
        return self.strict_unimplemented_providers

    def get_default_conflict_resolution(self) -> Optional[str]:
        return self.default_conflict_resolution

    def get_sync_max_emails(self) -> int:
        return self.sync_max_emails

    def get_provider_timeout_seconds(self) -> float:
        return self.provider_timeout_seconds

    def get_provider_max_retries(self) -> int:
        return self.provider_max_retries

    def get_provider_retry_base_delay(self) -> float:
        return self.provider_retry_base_delay

    def get_webhook_base_url(self) -> str:
        return self.webhook_base_url

    def get_log_level(self) -> str:
        return self.log_level

    def get_log_format(self) -> str:
        return self.log_format

    def get_web_host(self) -> str:
        return self.web_host

    def get_web_port(self) -> int:
        return self.web_port

    def get_web_workers(self) -> int:
        return self.web_workers

    def get_web_config(self) -> dict:
        """웹 서버 설정 조회"""
        return {
            "host": self.web_host,
            "port": self.web_port,
            "workers": self.web_workers,
        }

    def get_log_config(self) -> dict:
        """로그 설정 조회"""
        return {
            "level": self.log_level,
            "format": self.log_format,
        }


class DevelopmentConfig(BaseConfig):
    """개발 환경 설정"""

    environment: str = "development"
    debug: bool = True
    log_level: str = "DEBUG"

    # 개발용 기본값들
    database_url: str = Field(default="sqlite+aiosqlite:///./dev_email_sync.db")
    encryption_key: str = Field(default="dev_encryption_key_32_bytes_long")
    gmail_client_id: str = Field(default="dev_gmail_client_id")
    gmail_client_secret: str = Field(default="dev_gmail_client_secret")
    unified_api_key: str = Field(default="dev_unified_api_key")
    unified_webhook_secret: Optional[str] = Field(default="dev_unified_webhook_secret")


class ProductionConfig(BaseConfig):
    """운영 환경 설정"""

    environment: str = "production"
    debug: bool = False
    log_level: str = "INFO"

    # 운영 환경에서는 더 많은 워커 사용
    web_workers: int = Field(default=4)

    @field_validator("database_url")
    @classmethod
    def validate_production_database_url(cls, v):
        """운영 환경에서는 SQLite를 허용하지 않음"""
        if not v or v.startswith("sqlite"):
            raise ValueError("운영 환경에서는 PostgreSQL 데이터베이스가 필요합니다")
        return v

    @field_validator("encryption_key", "gmail_client_secret", "unified_api_key", "unified_webhook_secret")
    @classmethod
    def validate_production_secrets(cls, v):
        """운영 환경에서는 모든 시크릿이 필수"""
        if not v or v.startswith("dev_"):
            raise ValueError("운영 환경에서는 실제 시크릿 값이 필요합니다")
        return v


class TestingConfig(BaseConfig):
    """테스트 환경 설정"""

    environment: str = "testing"
    debug: bool = True
    log_level: str = "WARNING"

    database_url: str = Field(default="sqlite+aiosqlite:///:memory:")

    # 테스트용 더미 값들
    encryption_key: str = "test_encryption_key_32_bytes_long"
    gmail_client_id: str = "test_gmail_client_id"
    gmail_client_secret: str = "test_gmail_client_secret"
    gmail_pubsub_topic: Optional[str] = "projects/test/topics/mail"
    unified_api_key: str = "test_unified_api_key"
    unified_webhook_secret: Optional[str] = "test_unified_webhook_secret"
    provider_retry_base_delay: float = 0.0


class ConfigAdapter:
    """설정 어댑터 팩토리"""

    @staticmethod
    def create_config() -> ConfigPort:
        """환경에 따른 설정 객체를 생성합니다."""
        environment = os.getenv("ENVIRONMENT", "development").lower()

        if environment == "production":
            return ProductionConfig()
        elif environment == "testing":
            return TestingConfig()
        else:
            return DevelopmentConfig()


# 전역 설정 인스턴스
_config: Optional[ConfigPort] = None


def get_config() -> ConfigPort:
    """전역 설정 인스턴스를 반환합니다."""
    global _config
    if _config is None:
        _config = ConfigAdapter.create_config()
    return _config


def initialize_config() -> ConfigPort:
    """설정을 초기화합니다."""
    global _config
    _config = ConfigAdapter.create_config()
    return _config
