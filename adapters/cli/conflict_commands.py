"""
동기화 충돌 CLI 명령어

ConflictResolutionUseCase를 CLI 명령으로 노출하는 어댑터입니다.
"""

import asyncio
from typing import List, Optional
from uuid import UUID

import typer
from rich.console import Console
from rich.table import Table

from core.domain.entities import ConflictResolution, ConflictType
from adapters.db.database import initialize_database
from adapters.factory import get_adapter_factory
from config.adapters import get_config

# CLI 앱 생성
app = typer.Typer(name="conflicts", help="동기화 충돌 관리 명령어")
console = Console()


@app.command("list")
def list_conflicts(
    account_id: Optional[str] = typer.Option(None, help="계정 ID로 필터"),
    conflict_type: Optional[str] = typer.Option(None, "--type", help="충돌 종류 (update, delete, move)"),
    all_statuses: bool = typer.Option(False, "--all", help="해결/무시된 충돌도 표시"),
    limit: int = typer.Option(50, help="조회할 충돌 수"),
):
    """충돌 목록을 조회합니다."""
    try:
        account_uuid = UUID(account_id) if account_id else None
        type_enum = ConflictType(conflict_type) if conflict_type else None
    except ValueError as e:
        console.print(f"[red]오류: 잘못된 필터입니다. {str(e)}[/red]")
        raise typer.Exit(1)

    async def _list():
        try:
            config = get_config()
            db_adapter = initialize_database(config)
            await db_adapter.initialize()

            async with db_adapter.get_session() as session:
                usecase = get_adapter_factory().create_conflict_resolution_usecase(session)
                conflicts = await usecase.list_conflicts(
                    account_id=account_uuid,
                    conflict_type=type_enum,
                    include_closed=all_statuses,
                    limit=limit,
                )

            await db_adapter.close()

            if not conflicts:
                console.print("[yellow]충돌이 없습니다.[/yellow]")
                return

            table = Table(title="동기화 충돌 목록")
            table.add_column("ID", style="cyan")
            table.add_column("메시지 ID", style="blue")
            table.add_column("종류", style="magenta")
            table.add_column("필드", style="green")
            table.add_column("상태", style="yellow")
            table.add_column("해결", style="bright_blue")
            table.add_column("감지 시간", style="dim")

            for conflict in conflicts:
                table.add_row(
                    str(conflict.id),
                    conflict.external_id,
                    conflict.conflict_type.value,
                    ", ".join(conflict.conflict_fields) or "-",
                    conflict.status.value,
                    conflict.resolution.value if conflict.resolution else "-",
                    conflict.detected_at.strftime("%Y-%m-%d %H:%M") if conflict.detected_at else "-",
                )

            console.print(table)

        except Exception as e:
            console.print(f"[red]오류: {str(e)}[/red]")
            raise typer.Exit(1)

    asyncio.run(_list())


@app.command("resolve")
def resolve_conflicts(
    conflict_ids: List[str] = typer.Argument(..., help="충돌 ID (여러 개 가능)"),
    resolution: str = typer.Option(..., help="해결 정책 (local, remote, merge)"),
):
    """충돌을 해결합니다. 여러 ID를 주면 각각 독립적으로 처리합니다."""
    try:
        resolution_enum = ConflictResolution(resolution)
        ids = [UUID(conflict_id) for conflict_id in conflict_ids]
    except ValueError as e:
        console.print(f"[red]오류: 잘못된 입력입니다. {str(e)}[/red]")
        raise typer.Exit(1)

    async def _resolve():
        try:
            config = get_config()
            db_adapter = initialize_database(config)
            await db_adapter.initialize()

            async with db_adapter.get_session() as session:
                usecase = get_adapter_factory().create_conflict_resolution_usecase(session)
                result = await usecase.resolve_conflicts(ids, resolution_enum)

            await db_adapter.close()

            console.print(f"해결: {result.resolved} / 실패: {result.failed} / 전체: {result.total}")
            if result.failed:
                console.print("[yellow]일부 충돌을 해결하지 못했습니다. 로그를 확인하세요.[/yellow]")
                raise typer.Exit(1)
            console.print("[green]✓ 충돌이 해결되었습니다![/green]")

        except typer.Exit:
            raise
        except Exception as e:
            console.print(f"[red]오류: {str(e)}[/red]")
            raise typer.Exit(1)

    asyncio.run(_resolve())


@app.command("dismiss")
def dismiss_conflict(conflict_id: str = typer.Argument(..., help="충돌 ID")):
    """해결 정책을 적용하지 않고 충돌을 무시합니다."""
    try:
        conflict_uuid = UUID(conflict_id)
    except ValueError:
        console.print("[red]오류: 잘못된 충돌 ID 형식입니다.[/red]")
        raise typer.Exit(1)

    async def _dismiss():
        try:
            config = get_config()
            db_adapter = initialize_database(config)
            await db_adapter.initialize()

            async with db_adapter.get_session() as session:
                usecase = get_adapter_factory().create_conflict_resolution_usecase(session)
                await usecase.dismiss_conflict(conflict_uuid)

            await db_adapter.close()
            console.print("[green]✓ 충돌을 무시 처리했습니다.[/green]")

        except Exception as e:
            console.print(f"[red]오류: {str(e)}[/red]")
            raise typer.Exit(1)

    asyncio.run(_dismiss())
