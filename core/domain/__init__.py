"""
Domain 패키지

도메인 엔티티, 값 객체, 비즈니스 규칙을 정의합니다.
외부 의존성 없이 순수한 비즈니스 로직만 포함합니다.

주요 엔티티:
- EmailAccount: 메일 계정 및 동기화 설정
- EmailMessage: 제공자 독립적인 정규 메시지
- StoredEmail: 로컬 저장 메일과 동기화 스냅샷
- SyncLog: 동기화 실행 이력
- SyncConflict: 로컬/원격 동시 변경 충돌
"""
