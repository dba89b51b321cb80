"""Launcher for the pdfbot API using uvicorn."""

from __future__ import annotations

from typing import Optional

import typer
import uvicorn

from pdfbot.settings import get_settings

app = typer.Typer(help="Run the pdfbot FastAPI app with uvicorn.", add_completion=False)


@app.callback(invoke_without_command=True)
def serve(  # type: ignore[no-untyped-def]
    host: Optional[str] = typer.Option(None, "--host", help="Bind host (default HOST)."),
    port: Optional[int] = typer.Option(None, "--port", help="Bind port (default PORT)."),
    reload: bool = typer.Option(False, "--reload/--no-reload", help="Enable auto-reload."),
    log_level: str = typer.Option("info", "--log-level", help="Log level."),
) -> None:
    """Launch the API, reading host/port from settings unless overridden."""

    settings = get_settings()
    uvicorn.run(
        "pdfbot.api:create_app",
        factory=True,
        host=host or settings.api.host,
        port=port or settings.api.port,
        reload=reload,
        log_level=log_level.lower(),
    )


def main() -> None:
    app()


if __name__ == "__main__":
    main()
