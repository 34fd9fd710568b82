"""
외부 서비스 어댑터 패키지

자격 증명 암호화 등 외부 라이브러리와 연동하는 어댑터들을 포함합니다.
"""

from .encryption_service import EncryptionServiceAdapter

__all__ = [
    "EncryptionServiceAdapter",
]
