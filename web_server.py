"""
FastAPI 웹 서버

동기화 API와 제공자 웹훅 수신 엔드포인트를 제공합니다.
"""

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from adapters.web.conflict_routes import router as conflict_router
from adapters.web.sync_routes import router as sync_router
from adapters.web.webhook_routes import router as webhook_router
from adapters.db.database import get_database_adapter, initialize_database
from adapters.factory import get_adapter_factory
from adapters.logger import create_logger
from config.adapters import get_config

# FastAPI 앱 생성
app = FastAPI(
    title="메일 동기화 엔진",
    description="메일 제공자 동기화, 충돌 관리, 웹훅 수신 API",
    version="1.0.0",
)

# CORS 설정
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # 프로덕션에서는 특정 도메인만 허용
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 로거 설정
logger = create_logger("web_server")

# 라우터 등록
app.include_router(sync_router)
app.include_router(conflict_router)
app.include_router(webhook_router)


@app.on_event("startup")
async def startup_event():
    """서버 시작 시 실행되는 이벤트"""
    logger.info("FastAPI 웹 서버 시작")

    # 데이터베이스 초기화
    config = get_adapter_factory().get_config()
    db_adapter = initialize_database(config)
    await db_adapter.initialize()
    await db_adapter.create_tables()

    logger.info(f"환경: {config.get_environment()}")
    logger.info(f"데이터베이스: {config.get_database_url()}")
    logger.info("웹 서버 준비 완료")


@app.on_event("shutdown")
async def shutdown_event():
    """서버 종료 시 실행되는 이벤트"""
    logger.info("FastAPI 웹 서버 종료")

    # 데이터베이스 연결 종료
    db_adapter = get_database_adapter()
    if db_adapter:
        await db_adapter.close()


@app.get("/health")
async def health_check():
    """상태 확인"""
    config = get_adapter_factory().get_config()
    return {
        "status": "ok",
        "environment": config.get_environment(),
        "in_flight_syncs": len(get_adapter_factory().get_in_flight_registry()),
    }


if __name__ == "__main__":
    # 설정 로드
    config = get_config()

    # 서버 실행
    uvicorn.run(
        "web_server:app",
        host=config.get_web_host(),
        port=config.get_web_port(),
        reload=config.is_debug(),
        log_level=config.get_log_level().lower(),
    )
