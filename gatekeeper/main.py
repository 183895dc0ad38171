from __future__ import annotations

import uvicorn

from gatekeeper.core.app_factory import create_app
from gatekeeper.core.config import settings

app = create_app()


def run() -> None:
    """Serve the app with uvicorn on the configured APP_HOST / APP_PORT."""
    uvicorn.run(app, host=settings.app.host, port=settings.app.port, log_config=None)


if __name__ == "__main__":
    run()
