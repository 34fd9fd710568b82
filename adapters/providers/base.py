"""
제공자 어댑터 공통 기반

HTTP 기반 메일 제공자 어댑터가 공유하는 요청/재시도/오류 변환 로직입니다.
상태 코드는 AuthFailed, RateLimited, QuotaExceeded로 변환되어
Core가 제공자와 무관하게 동일한 방식으로 처리할 수 있습니다.
"""

import asyncio
from email.utils import parsedate_to_datetime
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import UUID

import httpx

from core.domain.entities import EmailProvider
from core.domain.exceptions import AuthFailed, ProviderError, QuotaExceeded, RateLimited
from core.domain.ports import ConfigPort, EmailProviderPort, LoggerPort


class RefreshLockPool:
    """계정별 토큰 갱신 잠금"""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}

    def get(self, account_id: UUID) -> asyncio.Lock:
        key = str(account_id)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock


class HttpProviderAdapter(EmailProviderPort):
    """HTTP API 제공자 어댑터 기반 클래스"""

    provider: EmailProvider

    def __init__(
        self,
        config: ConfigPort,
        logger: LoggerPort,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        self.logger = logger
        self.timeout = config.get_provider_timeout_seconds()
        self.max_retries = config.get_provider_max_retries()
        self.retry_base_delay = config.get_provider_retry_base_delay()
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def _request(
        self,
        method: str,
        url: str,
        context: str,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Any] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        """
        HTTP 요청을 보내고 오류 상태를 도메인 예외로 변환합니다.

        요청 한도 초과와 네트워크 오류는 지수 백오프로 재시도하며,
        인증/할당량 오류는 즉시 전달합니다.

        Args:
            method: HTTP 메서드
            url: 요청 URL
            context: 로그/오류 메시지에 사용할 작업 이름
            headers: 요청 헤더
            params: 쿼리 파라미터
            json: JSON 본문
            data: 폼 본문

        Returns:
            성공 응답

        Raises:
            AuthFailed, RateLimited, QuotaExceeded, ProviderError
        """
        attempt = 0
        while True:
            try:
                async with self._client() as client:
                    response = await client.request(
                        method,
                        url,
                        headers=headers,
                        params=params,
                        json=json,
                        data=data,
                    )
                self._raise_for_status(response, context)
                return response

            except (RateLimited, httpx.TransportError) as e:
                attempt += 1
                if attempt >= self.max_retries:
                    if isinstance(e, httpx.TransportError):
                        error_msg = f"{context} 실패: {type(e).__name__}"
                        self.logger.error(error_msg)
                        raise ProviderError(error_msg) from e
                    raise

                delay = self._retry_delay(e, attempt)
                self.logger.warning(
                    f"{context} 재시도 ({attempt}/{self.max_retries - 1}), {delay:.1f}초 대기"
                )
                await asyncio.sleep(delay)

    def _retry_delay(self, error: Exception, attempt: int) -> float:
        if isinstance(error, RateLimited) and error.retry_after is not None:
            return error.retry_after
        return self.retry_base_delay * (2 ** attempt)

    def _raise_for_status(self, response: httpx.Response, context: str) -> None:
        status = response.status_code
        if status < 400:
            return

        error_msg = f"{context} 실패: {status} - {response.text[:500]}"
        self.logger.error(error_msg)

        if status == 401:
            raise AuthFailed(error_msg, status)
        if status == 429:
            raise RateLimited(error_msg, status, retry_after=_parse_retry_after(response))
        if status == 403:
            raise self._forbidden_error(error_msg, status)
        raise ProviderError(error_msg, status)

    def _forbidden_error(self, error_msg: str, status: int) -> ProviderError:
        """403 응답 변환 (기본: 할당량 초과)"""
        return QuotaExceeded(error_msg, status)


def _parse_retry_after(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("retry-after")
    if not value:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        pass
    try:
        retry_at = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    return max((retry_at - datetime.now(timezone.utc)).total_seconds(), 0.0)


def to_naive_utc(value: datetime) -> datetime:
    """시간대 정보를 UTC 기준 naive datetime으로 변환"""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def from_epoch(value: Any, millis: bool = False) -> Optional[datetime]:
    """유닉스 시간(초/밀리초)을 datetime으로 변환"""
    if value in (None, ""):
        return None
    try:
        seconds = float(value) / 1000 if millis else float(value)
        return datetime.fromtimestamp(seconds, tz=timezone.utc).replace(tzinfo=None)
    except (TypeError, ValueError, OverflowError, OSError):
        return None
