"""kidsnet command line (Typer).

Commands:
    kidsnet serve      — Start the FastAPI server and reconciliation loop
    kidsnet reconcile  — Run one reconciliation tick and print corrections
    kidsnet status     — Print every subject's current access state
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

import typer

if TYPE_CHECKING:
    from kidsnet.access.engine import AccessEngine

app = typer.Typer(
    name="kidsnet",
    help="kidsnet — household network access control for pfSense and UniFi",
)


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", help="API server host"),
    port: int = typer.Option(3030, help="API server port"),
    reload: bool = typer.Option(False, help="Enable auto-reload for development"),
) -> None:
    """Start the kidsnet API server (runs the reconciliation loop in-process)."""
    import uvicorn

    uvicorn.run(
        "kidsnet.api.app:create_app",
        host=host,
        port=port,
        reload=reload,
        factory=True,
    )


def _with_engine(action: Callable[[AccessEngine], Awaitable[None]]) -> None:
    """Build a loaded engine from settings, run one action, and clean up."""

    async def _run() -> None:
        from kidsnet.access.engine import AccessEngine
        from kidsnet.config import get_settings
        from kidsnet.db.session import create_async_engine_from_url, create_session_factory, init_db
        from kidsnet.log_config import configure_logging

        settings = get_settings()
        configure_logging(log_level=settings.log_level, log_format=settings.log_format)

        db_engine = create_async_engine_from_url(settings.database_url)
        await init_db(db_engine)
        access_engine = await AccessEngine.from_settings(settings, create_session_factory(db_engine))
        try:
            await action(access_engine)
        finally:
            await access_engine.close()
            await db_engine.dispose()

    asyncio.run(_run())


@app.command()
def reconcile() -> None:
    """One-shot reconciliation tick — correct drift once and print what changed."""

    async def _action(engine: AccessEngine) -> None:
        result = await engine.run_reconciliation_tick()
        typer.echo(f"Tick:        {result.tick_id}")
        typer.echo(f"Outcome:     {result.outcome}")
        typer.echo(f"Corrections: {len(result.corrections)}")
        for correction in result.corrections:
            state = "allowed" if correction.allowed else "blocked"
            typer.echo(f"  {correction.subject.name} -> {state}")
        if result.error:
            typer.echo(f"Error:       {result.error}", err=True)
            raise typer.Exit(code=1)

    _with_engine(_action)


@app.command()
def status() -> None:
    """Print each subject's rule, schedule, timer, and skip state."""

    async def _action(engine: AccessEngine) -> None:
        for state in await engine.get_subject_states():
            if not state.found:
                access = "rule missing"
            else:
                access = "blocked" if state.blocked else "allowed"
            schedule = "off"
            if state.schedule.enabled:
                schedule = "in window" if state.schedule.active else "outside window"
            line = f"{state.name:<16} {access:<12} schedule={schedule}"
            if state.timer_ends_at:
                line += f" timer_until={state.timer_ends_at:%H:%M}"
            if state.skip_until:
                line += f" skip_until={state.skip_until:%a %H:%M}"
            typer.echo(line)

    _with_engine(_action)


if __name__ == "__main__":
    app()
