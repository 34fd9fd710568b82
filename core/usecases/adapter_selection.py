"""
제공자 어댑터 선택

실행마다 한 번, 정해진 우선순위로 어댑터를 선택합니다.
1. 옵션으로 지정된 어댑터
2. 통합 제공자 계정 ID가 있으면 통합 어댑터
3. 전역 "통합 제공자 우선" 설정이 켜져 있으면 통합 어댑터
4. 계정의 기본 제공자
"""

from typing import Dict, Optional

from ..domain.entities import EmailAccount, EmailProvider
from ..domain.exceptions import UnsupportedProvider
from ..domain.ports import EmailProviderPort


class AdapterSelector:
    """제공자 어댑터 선택기"""

    def __init__(self, adapters: Dict[EmailProvider, EmailProviderPort], prefer_unified: bool = False):
        self.adapters = dict(adapters)
        self.prefer_unified = prefer_unified

    def get(self, provider: EmailProvider) -> EmailProviderPort:
        """제공자 종류로 어댑터 조회"""
        adapter = self.adapters.get(provider)
        if adapter is None:
            raise UnsupportedProvider(f"등록되지 않은 제공자입니다: {provider.value}")
        return adapter

    def select(self, account: EmailAccount, preferred: Optional[EmailProvider] = None) -> EmailProviderPort:
        if preferred is not None:
            if preferred == EmailProvider.UNIFIED and not account.has_unified_link():
                raise UnsupportedProvider(
                    f"통합 제공자와 연결되지 않은 계정입니다: {account.id}"
                )
            if preferred not in (EmailProvider.UNIFIED, account.provider):
                raise UnsupportedProvider(
                    f"{account.provider.value} 계정은 {preferred.value} 어댑터를 사용할 수 없습니다"
                )
            return self.get(preferred)

        if account.has_unified_link():
            return self.get(EmailProvider.UNIFIED)

        if self.prefer_unified:
            return self.get(EmailProvider.UNIFIED)

        return self.get(account.provider)
