"""Run the export API with uvicorn."""

import uvicorn

from cmcd_telemetry.core.config import get_settings


def run() -> None:
    """Serve cmcd_telemetry.main:app on the configured host and port."""
    settings = get_settings()
    uvicorn.run(
        "cmcd_telemetry.main:app",
        host=settings.host,
        port=settings.port,
        log_config=None,
    )


if __name__ == "__main__":
    run()
