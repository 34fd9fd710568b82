"""
도메인 예외 정의

동기화 엔진 전반에서 사용하는 예외 계층입니다.
제공자별 오류는 어댑터에서 이 예외들로 변환되어 Core로 전달됩니다.
"""

from typing import Optional


class SyncEngineError(Exception):
    """동기화 엔진 기본 예외"""


class AccountNotFound(SyncEngineError):
    """계정을 찾을 수 없음"""

    def __init__(self, account_id):
        self.account_id = account_id
        super().__init__(f"계정을 찾을 수 없습니다: {account_id}")


class AccountInactive(SyncEngineError):
    """비활성 계정"""

    def __init__(self, account_id, status=None):
        self.account_id = account_id
        self.status = status
        super().__init__(f"동기화할 수 없는 계정 상태입니다: {account_id} ({status})")


class UnsupportedProvider(SyncEngineError):
    """지원하지 않는 제공자 또는 기능"""


class ProviderError(SyncEngineError):
    """제공자 API 호출 실패"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class AuthFailed(ProviderError):
    """인증 실패 (토큰 무효 또는 갱신 불가)"""


class RateLimited(ProviderError):
    """요청 한도 초과"""

    def __init__(self, message: str, status_code: Optional[int] = 429, retry_after: Optional[float] = None):
        self.retry_after = retry_after
        super().__init__(message, status_code)


class QuotaExceeded(ProviderError):
    """할당량 초과"""


class PerMessageProcessingError(SyncEngineError):
    """개별 메시지 처리 실패 (배치는 계속 진행)"""

    def __init__(self, message_id: str, reason: str):
        self.message_id = message_id
        self.reason = reason
        super().__init__(f"메시지 처리 실패: {message_id} - {reason}")


class MalformedWebhookPayload(SyncEngineError):
    """잘못된 웹훅 페이로드"""


class ConflictNotFound(SyncEngineError):
    """충돌을 찾을 수 없음"""

    def __init__(self, conflict_id):
        self.conflict_id = conflict_id
        super().__init__(f"충돌을 찾을 수 없습니다: {conflict_id}")


class RealTimeSyncError(SyncEngineError):
    """실시간 동기화 설정/해제 실패"""


class CredentialError(SyncEngineError):
    """자격 증명 암호화/복호화 실패"""
