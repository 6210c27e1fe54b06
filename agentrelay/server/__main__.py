"""Run the API server: ``python -m agentrelay.server``."""

import uvicorn

from .core.config import settings

if __name__ == "__main__":
    uvicorn.run(
        "agentrelay.server.main:app",
        host=settings.server_host,
        port=settings.server_port,
        log_level=settings.log_level.lower(),
    )
