"""
메일 동기화 CLI 명령어

EmailSyncUseCase를 CLI 명령으로 노출하는 어댑터입니다.
"""

import asyncio
from typing import Optional
from uuid import UUID

import typer
from rich.console import Console
from rich.table import Table

from core.domain.entities import ConflictResolution, EmailProvider, SyncOptions
from adapters.db.database import initialize_database
from adapters.factory import get_adapter_factory
from config.adapters import get_config

# CLI 앱 생성
app = typer.Typer(name="sync", help="메일 동기화 명령어")
console = Console()


def _parse_account_id(account_id: str) -> UUID:
    try:
        return UUID(account_id)
    except ValueError:
        console.print("[red]오류: 잘못된 계정 ID 형식입니다.[/red]")
        raise typer.Exit(1)


@app.command("run")
def run_sync(
    account_id: str = typer.Argument(..., help="계정 ID"),
    full: Optional[bool] = typer.Option(None, "--full/--incremental", help="전체/증분 동기화 (기본: 계정 설정)"),
    max_emails: Optional[int] = typer.Option(None, help="최대 메일 수"),
    folder: Optional[str] = typer.Option(None, help="동기화 대상 폴더"),
    adapter: Optional[str] = typer.Option(None, help="사용할 어댑터 (gmail, unified, exchange, imap)"),
    resolution: Optional[str] = typer.Option(None, help="충돌 자동 해결 정책 (local, remote, merge)"),
):
    """계정의 메일을 동기화합니다."""
    account_uuid = _parse_account_id(account_id)

    try:
        options = SyncOptions(
            full_sync=full,
            max_emails=max_emails,
            folder_scope=folder,
            preferred_adapter=EmailProvider(adapter) if adapter else None,
            conflict_resolution=ConflictResolution(resolution) if resolution else None,
        )
    except ValueError as e:
        console.print(f"[red]오류: 잘못된 옵션입니다. {str(e)}[/red]")
        raise typer.Exit(1)

    async def _run():
        try:
            config = get_config()
            db_adapter = initialize_database(config)
            await db_adapter.initialize()

            async with db_adapter.get_session() as session:
                usecase = get_adapter_factory().create_email_sync_usecase(session)
                console.print(f"[blue]동기화 시작: {account_uuid}[/blue]")
                result = await usecase.sync_account(account_uuid, options)

            await db_adapter.close()

            table = Table(title="동기화 결과")
            table.add_column("항목", style="cyan")
            table.add_column("값", style="green")
            table.add_row("처리", str(result.emails_processed))
            table.add_row("추가", str(result.emails_added))
            table.add_row("업데이트", str(result.emails_updated))
            table.add_row("변경 없음", str(result.emails_unchanged))
            table.add_row("삭제", str(result.emails_deleted))
            table.add_row("충돌", str(result.conflicts_detected))
            table.add_row("오류", str(result.errors_count))
            table.add_row("소요 시간(초)", f"{(result.completed_at - result.started_at).total_seconds():.2f}")
            console.print(table)

            if result.success:
                console.print("[green]✓ 동기화가 완료되었습니다![/green]")
            else:
                console.print(f"[yellow]일부 메일 처리에 실패했습니다. (오류 {result.errors_count}건)[/yellow]")

        except Exception as e:
            console.print(f"[red]오류: {str(e)}[/red]")
            raise typer.Exit(1)

    asyncio.run(_run())


@app.command("logs")
def show_logs(
    account_id: str = typer.Argument(..., help="계정 ID"),
    limit: int = typer.Option(10, help="조회할 로그 수"),
):
    """동기화 이력을 조회합니다."""
    account_uuid = _parse_account_id(account_id)

    async def _logs():
        try:
            config = get_config()
            db_adapter = initialize_database(config)
            await db_adapter.initialize()

            async with db_adapter.get_session() as session:
                usecase = get_adapter_factory().create_email_sync_usecase(session)
                logs = await usecase.list_sync_logs(account_uuid, limit=limit)

            await db_adapter.close()

            if not logs:
                console.print("[yellow]동기화 이력이 없습니다.[/yellow]")
                return

            table = Table(title="동기화 이력")
            table.add_column("시작", style="dim")
            table.add_column("종류", style="blue")
            table.add_column("상태", style="yellow")
            table.add_column("처리", style="cyan")
            table.add_column("추가", style="green")
            table.add_column("업데이트", style="green")
            table.add_column("삭제", style="magenta")
            table.add_column("오류", style="red")
            table.add_column("오류 메시지")

            for log in logs:
                table.add_row(
                    log.started_at.strftime("%Y-%m-%d %H:%M:%S") if log.started_at else "-",
                    log.sync_type.value,
                    log.status.value,
                    str(log.emails_processed),
                    str(log.emails_added),
                    str(log.emails_updated),
                    str(log.emails_deleted),
                    str(log.errors_count),
                    (log.error_message or "-")[:60],
                )

            console.print(table)

        except Exception as e:
            console.print(f"[red]오류: {str(e)}[/red]")
            raise typer.Exit(1)

    asyncio.run(_logs())


@app.command("realtime-start")
def start_realtime(account_id: str = typer.Argument(..., help="계정 ID")):
    """푸시 구독을 생성해 실시간 동기화를 시작합니다."""
    account_uuid = _parse_account_id(account_id)

    async def _start():
        try:
            config = get_config()
            db_adapter = initialize_database(config)
            await db_adapter.initialize()

            async with db_adapter.get_session() as session:
                usecase = get_adapter_factory().create_email_sync_usecase(session)
                subscription = await usecase.start_real_time_sync(account_uuid)

            await db_adapter.close()

            if subscription.status == "unsupported":
                console.print("[yellow]이 제공자는 실시간 동기화를 지원하지 않습니다.[/yellow]")
                return

            console.print("[green]✓ 실시간 동기화가 시작되었습니다![/green]")
            console.print(f"구독 ID: {subscription.subscription_id or '-'}")
            console.print(f"상태: {subscription.status}")
            if subscription.expires_at:
                console.print(f"만료: {subscription.expires_at}")

        except Exception as e:
            console.print(f"[red]오류: {str(e)}[/red]")
            raise typer.Exit(1)

    asyncio.run(_start())


@app.command("realtime-stop")
def stop_realtime(account_id: str = typer.Argument(..., help="계정 ID")):
    """푸시 구독을 해제합니다."""
    account_uuid = _parse_account_id(account_id)

    async def _stop():
        try:
            config = get_config()
            db_adapter = initialize_database(config)
            await db_adapter.initialize()

            async with db_adapter.get_session() as session:
                usecase = get_adapter_factory().create_email_sync_usecase(session)
                await usecase.stop_real_time_sync(account_uuid)

            await db_adapter.close()
            console.print("[green]✓ 실시간 동기화가 중지되었습니다.[/green]")

        except Exception as e:
            console.print(f"[red]오류: {str(e)}[/red]")
            raise typer.Exit(1)

    asyncio.run(_stop())
