"""
데이터베이스 관리 CLI 명령어

데이터베이스 리셋과 테이블 현황 조회를 위한 CLI 명령어입니다.
"""

import asyncio
import typer
from rich.console import Console
from rich.table import Table
from sqlalchemy import text

from adapters.db.database import initialize_database
from adapters.db.models import Base
from config.adapters import get_config

# CLI 앱 생성
app = typer.Typer(name="db", help="데이터베이스 관리 명령어")
console = Console()


@app.command("reset")
def reset_database():
    """데이터베이스를 리셋합니다. (모든 데이터 삭제)"""

    confirm = typer.confirm("모든 데이터가 삭제됩니다. 계속하시겠습니까?")
    if not confirm:
        console.print("[yellow]취소되었습니다.[/yellow]")
        return

    async def _reset():
        try:
            console.print("[blue]데이터베이스 리셋 시작...[/blue]")

            # 설정 및 데이터베이스 초기화
            config = get_config()
            db_adapter = initialize_database(config)
            await db_adapter.initialize()

            # 테이블 삭제 후 재생성
            await db_adapter.drop_tables()
            await db_adapter.create_tables()

            console.print("[green]✓ 데이터베이스 리셋이 완료되었습니다![/green]")

            await db_adapter.close()

        except Exception as e:
            console.print(f"[red]오류: {str(e)}[/red]")
            raise typer.Exit(1)

    asyncio.run(_reset())


@app.command("stats")
def show_stats():
    """테이블별 행 수와 동기화 상태 분포를 조회합니다."""

    async def _stats():
        try:
            config = get_config()
            db_adapter = initialize_database(config)
            await db_adapter.initialize()

            async with db_adapter.get_session() as session:
                table = Table(title="테이블 현황")
                table.add_column("테이블", style="cyan")
                table.add_column("행 수", style="green")

                for table_name in Base.metadata.tables:
                    result = await session.execute(text(f"SELECT COUNT(*) FROM {table_name}"))
                    table.add_row(table_name, str(result.scalar()))

                console.print(table)

                result = await session.execute(text(
                    "SELECT status, COUNT(*) AS count FROM email_sync_conflicts GROUP BY status"
                ))
                rows = result.fetchall()
                if rows:
                    conflict_table = Table(title="충돌 상태 분포")
                    conflict_table.add_column("상태", style="yellow")
                    conflict_table.add_column("건수", style="green")
                    for row in rows:
                        conflict_table.add_row(row.status, str(row.count))
                    console.print(conflict_table)

            await db_adapter.close()

        except Exception as e:
            console.print(f"[red]오류: {str(e)}[/red]")
            raise typer.Exit(1)

    asyncio.run(_stats())


if __name__ == "__main__":
    app()
