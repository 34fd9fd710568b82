"""
메일 계정 CLI 명령어

동기화 대상 계정을 등록하고 조회하는 어댑터입니다.
토큰은 저장 전에 암호화됩니다.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from core.domain.entities import EmailAccount, EmailProvider
from adapters.db.database import initialize_database
from adapters.factory import get_adapter_factory
from config.adapters import get_config

# CLI 앱 생성
app = typer.Typer(name="account", help="메일 계정 관리 명령어")
console = Console()


@app.command("register")
def register_account(
    email: str = typer.Argument(..., help="이메일 주소"),
    provider: str = typer.Option("gmail", help="기본 제공자 (gmail, unified, exchange, imap)"),
    access_token: Optional[str] = typer.Option(None, help="액세스 토큰"),
    refresh_token: Optional[str] = typer.Option(None, help="리프레시 토큰"),
    expires_in: Optional[int] = typer.Option(None, help="액세스 토큰 만료까지 남은 초"),
    external_id: Optional[str] = typer.Option(None, help="통합 제공자 계정(grant) ID"),
    max_emails: int = typer.Option(100, help="1회 동기화 최대 메일 수"),
    folder: Optional[str] = typer.Option(None, help="동기화 대상 폴더"),
    full_sync: bool = typer.Option(False, "--full-sync", help="기본 전체 동기화 사용"),
):
    """새로운 메일 계정을 등록합니다."""
    try:
        provider_enum = EmailProvider(provider)
    except ValueError:
        console.print("[red]오류: 잘못된 제공자입니다. (gmail, unified, exchange, imap)[/red]")
        raise typer.Exit(1)

    async def _register():
        try:
            config = get_config()
            db_adapter = initialize_database(config)
            await db_adapter.initialize()

            factory = get_adapter_factory()
            encryption_service = factory.create_encryption_service()

            async with db_adapter.get_session() as session:
                account_repo = factory.create_account_repository(session)

                if await account_repo.get_by_email(email):
                    console.print(f"[red]오류: 이미 등록된 이메일입니다: {email}[/red]")
                    raise typer.Exit(1)

                account = EmailAccount(
                    email=email,
                    provider=provider_enum,
                    access_token=await encryption_service.encrypt(access_token) if access_token else None,
                    refresh_token=await encryption_service.encrypt(refresh_token) if refresh_token else None,
                    token_expires_at=(
                        datetime.utcnow() + timedelta(seconds=expires_in) if expires_in else None
                    ),
                    external_id=external_id,
                    max_emails=max_emails,
                    folder_scope=folder,
                    full_sync=full_sync,
                )
                account = await account_repo.create(account)

            await db_adapter.close()

            console.print("[green]✓ 계정이 성공적으로 등록되었습니다![/green]")
            console.print(f"계정 ID: {account.id}")
            console.print(f"이메일: {account.email}")
            console.print(f"제공자: {account.provider.value}")
            if account.external_id:
                console.print(f"통합 제공자 ID: {account.external_id}")

        except typer.Exit:
            raise
        except Exception as e:
            console.print(f"[red]오류: {str(e)}[/red]")
            raise typer.Exit(1)

    asyncio.run(_register())


@app.command("list")
def list_accounts():
    """활성 계정 목록을 조회합니다."""

    async def _list():
        try:
            config = get_config()
            db_adapter = initialize_database(config)
            await db_adapter.initialize()

            async with db_adapter.get_session() as session:
                account_repo = get_adapter_factory().create_account_repository(session)
                accounts = await account_repo.list_active()

            await db_adapter.close()

            if not accounts:
                console.print("[yellow]등록된 계정이 없습니다.[/yellow]")
                return

            # 테이블 생성
            table = Table(title="등록된 계정 목록")
            table.add_column("ID", style="cyan")
            table.add_column("이메일", style="green")
            table.add_column("제공자", style="magenta")
            table.add_column("동기화 상태", style="yellow")
            table.add_column("실시간", style="blue")
            table.add_column("마지막 동기화", style="dim")
            table.add_column("마지막 오류", style="red")

            for account in accounts:
                table.add_row(
                    str(account.id),
                    account.email,
                    account.provider.value + (" (unified)" if account.has_unified_link() else ""),
                    account.sync_status.value,
                    "on" if account.push_subscription_id else "-",
                    account.last_sync_at.strftime("%Y-%m-%d %H:%M") if account.last_sync_at else "-",
                    (account.sync_error or "-")[:40],
                )

            console.print(table)

        except Exception as e:
            console.print(f"[red]오류: {str(e)}[/red]")
            raise typer.Exit(1)

    asyncio.run(_list())
