# src/pyaroma/__main__.py
import typer
import uvicorn

from . import cli
from .config import settings

app = typer.Typer(
    name="pyaroma",
    help="A Python tool to encode, send and decode aroma diffuser command frames.",
    add_completion=False,
)

app.add_typer(cli.app, name="cli")


@app.command()
def api_server():
    """
    Runs the FastAPI web server and the telemetry poller.
    """
    print(
        f"Starting pyaroma API server on http://{settings.API_HOST}:{settings.API_PORT}"
    )
    print("Interactive API docs available at http://localhost:8000/docs")
    if settings.POLLER_ENABLED:
        print(
            f"Telemetry poller enabled for {len(settings.POLL_DEVICE_IDS)} devices "
            f"every {settings.POLL_INTERVAL}s."
        )
    else:
        print("Telemetry poller is disabled.")

    uvicorn.run(
        "pyaroma.api:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=False,
    )


# For convenience, alias 'api' to 'api_server'
app.command("api")(api_server)


if __name__ == "__main__":
    app()
