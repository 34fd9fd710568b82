"""
자격 증명 암호화 어댑터

메일 계정 토큰의 암호화/복호화를 담당합니다.
PBKDF2로 파생한 키로 Fernet 대칭 암호화를 사용합니다.
"""

import base64

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from core.domain.exceptions import CredentialError
from core.domain.ports import EncryptionServicePort, LoggerPort


class EncryptionServiceAdapter(EncryptionServicePort):
    """자격 증명 암호화 어댑터"""

    def __init__(self, encryption_key: str, logger: LoggerPort):
        self.logger = logger
        self._fernet = self._create_fernet(encryption_key)

    def _create_fernet(self, password: str) -> Fernet:
        """암호화 키로부터 Fernet 인스턴스를 생성합니다."""
        salt = b'mail_sync_credential_salt'

        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt,
            iterations=100000,
        )

        key = base64.urlsafe_b64encode(kdf.derive(password.encode()))
        return Fernet(key)

    async def encrypt(self, data: str) -> str:
        """데이터를 암호화합니다."""
        if not data:
            return ""

        try:
            encrypted_data = self._fernet.encrypt(data.encode())
        except Exception as e:
            self.logger.error(f"데이터 암호화 실패: {str(e)}")
            raise CredentialError(f"암호화 실패: {str(e)}") from e

        self.logger.debug("데이터 암호화 성공")
        return encrypted_data.decode()

    async def decrypt(self, encrypted_data: str) -> str:
        """암호화된 데이터를 복호화합니다."""
        if not encrypted_data:
            return ""

        try:
            decrypted_data = self._fernet.decrypt(encrypted_data.encode())
        except (InvalidToken, ValueError) as e:
            self.logger.error("데이터 복호화 실패: 키가 맞지 않거나 손상된 값입니다")
            raise CredentialError("복호화 실패") from e

        self.logger.debug("데이터 복호화 성공")
        return decrypted_data.decode()

