"""
Main application class for the genval MCP client.
"""

import uuid
from contextlib import asynccontextmanager
from typing import Optional

from genval_mcp.config.settings import Settings, load_config
from genval_mcp.mcp.notifications import NotificationHandler
from genval_mcp.mcp.orchestrator import Orchestrator
from genval_mcp.utils.logging import configure_logging, get_logger


class GenvalApp:
    """
    Loads configuration, sets up logging and owns the Orchestrator for the
    duration of one command.

    Example usage:
        app = GenvalApp(config_path="genval_mcp.config.yaml")

        async with app.run() as running_app:
            report = await running_app.orchestrator.call_tool_report(
                "default.get_pods", {}
            )
    """

    def __init__(
        self,
        name: str = "genval",
        config_path: Optional[str] = None,
        settings: Optional[Settings] = None,
        notification_handler: Optional[NotificationHandler] = None,
        orchestrator_factory=Orchestrator,
    ):
        """
        Initialize the application.

        Args:
            name: Name of the application.
            config_path: Path to configuration file (if not provided, looks for genval_mcp.config.yaml).
            settings: Configuration object (if provided, takes precedence over config_path).
            notification_handler: Custom handler for pushed notifications.
            orchestrator_factory: Builds the orchestrator from the loaded settings.
        """
        self.name = name
        self._config_path = config_path
        self._settings = settings
        self._notification_handler = notification_handler
        self._orchestrator_factory = orchestrator_factory

        self._logger = None
        self._orchestrator: Optional[Orchestrator] = None
        self._session_id: Optional[str] = None

    @property
    def orchestrator(self) -> Orchestrator:
        """Get the running orchestrator."""
        if self._orchestrator is None:
            raise RuntimeError(
                "GenvalApp not running. Use `async with app.run()` first."
            )
        return self._orchestrator

    @property
    def config(self) -> Settings:
        if self._settings is None:
            self._settings = load_config(self._config_path)
        return self._settings

    @property
    def session_id(self) -> Optional[str]:
        return self._session_id

    @property
    def logger(self):
        if self._logger is None:
            self._logger = get_logger(f"genval.{self.name}")
        return self._logger

    @asynccontextmanager
    async def run(self):
        """
        Run the application as an async context manager. Startup runs the
        whole endpoint lifecycle; every endpoint is closed on exit.

        Yields:
            The running application instance.
        """
        config = self.config
        configure_logging(
            level=config.logging.level,
            add_file_handler=config.logging.file_path,
            console=config.logging.console,
        )

        self._session_id = str(uuid.uuid4())
        self.logger.info(f"GenvalApp starting - app_name: {self.name}, session_id: {self._session_id}")

        async with self._orchestrator_factory(
            config,
            notification_handler=self._notification_handler,
            name=self.name,
        ) as orchestrator:
            self._orchestrator = orchestrator
            try:
                await orchestrator.setup()
                yield self
            finally:
                self.logger.info(f"GenvalApp cleaning up - app_name: {self.name}, session_id: {self._session_id}")
                self._orchestrator = None
