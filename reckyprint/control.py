"""Local HTTP control endpoint.

Lets a local process hand the agent its credential (``POST /token``) and
read its status. The app holds the ConnectionManager it was built with.
"""

import contextlib
import logging

import uvicorn
from fastapi import FastAPI, status

from reckyprint import __version__
from reckyprint.connection import ConnectionManager
from reckyprint.schemas import TokenRequest

logger = logging.getLogger(__name__)


def create_control_app(connection: ConnectionManager) -> FastAPI:
    """Build the control API bound to one connection.

    Args:
        connection: Connection that receives injected credentials.

    Returns:
        FastAPI: Application instance.
    """
    app = FastAPI(title="Recky Print control", version=__version__)

    @app.post("/token", status_code=status.HTTP_202_ACCEPTED)
    async def set_token(body: TokenRequest) -> dict:
        """Store a credential and authenticate with it."""
        logger.info("Credential received on control endpoint")
        sent = await connection.authenticate(body.token)
        return {"sent": sent, "connection": connection.status()}

    @app.get("/status")
    async def get_status() -> dict:
        """Connection state and queue counters."""
        stats = connection.queue.get_stats().to_payload()
        return {"connection": connection.status(), "queue": stats.model_dump(by_alias=True)}

    return app


class ControlServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to the agent."""

    @contextlib.contextmanager
    def capture_signals(self):
        yield

    def install_signal_handlers(self) -> None:
        pass

    @classmethod
    def create(cls, connection: ConnectionManager, host: str, port: int) -> "ControlServer":
        config = uvicorn.Config(
            create_control_app(connection),
            host=host,
            port=port,
            log_config=None,
            lifespan="off",
        )
        return cls(config)

    def stop(self) -> None:
        self.should_exit = True
