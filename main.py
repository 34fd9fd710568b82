"""
메일 동기화 엔진

메인 진입점 파일입니다.
"""

import asyncio
import typer
from rich.console import Console

from adapters.cli.account_commands import app as account_app
from adapters.cli.conflict_commands import app as conflict_app
from adapters.cli.db_commands import app as db_app
from adapters.cli.sync_commands import app as sync_app
from adapters.db.database import initialize_database
from adapters.providers.registry import list_registered_providers
from config.adapters import get_config

# 메인 CLI 앱
app = typer.Typer(
    name="mailsync",
    help="메일 동기화 엔진",
    no_args_is_help=True,
)

# 서브 명령어 추가
app.add_typer(account_app, name="account")
app.add_typer(sync_app, name="sync")
app.add_typer(conflict_app, name="conflicts")
app.add_typer(db_app, name="db")

console = Console()


@app.command("init-db")
def init_database(
    drop_existing: bool = typer.Option(False, "--drop", help="기존 테이블을 삭제하고 재생성"),
):
    """데이터베이스를 초기화합니다."""

    async def _init_db():
        try:
            config = get_config()
            console.print(f"[blue]환경: {config.get_environment()}[/blue]")
            console.print(f"[blue]데이터베이스: {config.get_database_url()}[/blue]")

            # 데이터베이스 어댑터 초기화
            db_adapter = initialize_database(config)
            await db_adapter.initialize()

            if drop_existing:
                console.print("[yellow]기존 테이블을 삭제하는 중...[/yellow]")
                await db_adapter.drop_tables()

            console.print("[blue]데이터베이스 테이블을 생성하는 중...[/blue]")
            await db_adapter.create_tables()

            console.print("[green]✓ 데이터베이스가 성공적으로 초기화되었습니다![/green]")

            await db_adapter.close()

        except Exception as e:
            console.print(f"[red]오류: {str(e)}[/red]")
            raise typer.Exit(1)

    asyncio.run(_init_db())


@app.command("version")
def show_version():
    """버전 정보를 표시합니다."""
    console.print("[bold]메일 동기화 엔진[/bold]")
    console.print("버전: 1.0.0")


@app.command("config")
def show_config():
    """현재 설정을 표시합니다."""
    try:
        config = get_config()

        console.print("[bold]현재 설정[/bold]")
        console.print(f"환경: {config.get_environment()}")
        console.print(f"디버그 모드: {config.is_debug()}")
        console.print(f"데이터베이스 URL: {config.get_database_url()}")
        console.print(f"Gmail API: {config.get_gmail_api_base_url()}")
        console.print(f"Gmail Pub/Sub 토픽: {config.get_gmail_pubsub_topic() or '-'}")
        console.print(f"통합 제공자 API: {config.get_unified_api_base_url()}")
        console.print(f"통합 제공자 우선: {config.is_unified_preferred()}")
        console.print(f"미구현 제공자 즉시 실패: {config.is_strict_unimplemented_providers()}")
        console.print(f"기본 충돌 해결 정책: {config.get_default_conflict_resolution() or '보류'}")
        console.print(f"동기화 최대 메일 수: {config.get_sync_max_emails()}")
        console.print(f"제공자 요청 타임아웃(초): {config.get_provider_timeout_seconds()}")
        console.print(f"웹훅 기본 URL: {config.get_webhook_base_url()}")
        console.print(f"로그 레벨: {config.get_log_level()}")
        console.print(
            "등록된 제공자: " + ", ".join(provider.value for provider in list_registered_providers())
        )

    except Exception as e:
        console.print(f"[red]오류: {str(e)}[/red]")
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
