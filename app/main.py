# Application bootstrap shared by the CLI and embedding code

from typing import Optional

from core.config.settings import Settings
from core.logging import configure_logging, get_logger
from app.containers import AppContainer
from services.auth.pipeline import AuthenticatedPipeline
from services.auth.service import AuthService


class ClientApplication:
    """Owns the container and the lifecycle of the auth stack.

    Usage:
        async with ClientApplication() as app:
            response = await app.pipeline.get("/client/portfolio/summary")
    """

    def __init__(self, container: Optional[AppContainer] = None, settings: Optional[Settings] = None):
        self.container = container or AppContainer()
        if settings is not None:
            self.container.settings.override(settings)

        self.settings = self.container.settings()
        configure_logging(self.settings)
        self.logger = get_logger("cosmos.main", component="application")
        self._started = False

    @property
    def auth_service(self) -> AuthService:
        return self.container.auth_service()

    @property
    def pipeline(self) -> AuthenticatedPipeline:
        return self.container.pipeline()

    async def startup(self, restore_session: bool = True) -> None:
        """Wire the auth stack and optionally validate the stored session."""
        self.logger.info(
            "Starting client",
            base_url=self.settings.api.base_url,
            credential_backend=self.settings.credential_store.backend,
        )
        if restore_session:
            await self.auth_service.start()
        else:
            self.auth_service.attach()
        self._started = True

    async def shutdown(self) -> None:
        if not self._started:
            return
        await self.auth_service.stop()
        self._started = False
        self.logger.info("Client stopped")

    async def __aenter__(self) -> "ClientApplication":
        await self.startup()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.shutdown()
