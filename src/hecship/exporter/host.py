# src/hecship/exporter/host.py
"""Host integration: project name and scope lookups via pluggy.

HostIntegration owns a pluggy PluginManager with the HecshipHostSpec hooks
registered. With no plugin answering, the project name is "default" and
nothing is in scope.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Any

import pluggy
import structlog

from hecship.errors import HostPluginError
from hecship.exporter.hookspecs import PROJECT_NAME, HecshipHostSpec, hookimpl

logger = structlog.get_logger(__name__)

DEFAULT_PROJECT_NAME = "default"


class HostIntegration:
    """Answers host questions for event enrichment.

    Hook failures are logged and answered with the default; enrichment of
    a record never fails because a host plugin misbehaved.
    """

    def __init__(self, plugins: Iterable[Any] = ()) -> None:
        self._plugin_manager = pluggy.PluginManager(PROJECT_NAME)
        self._plugin_manager.add_hookspecs(HecshipHostSpec)
        for plugin in plugins:
            self.register(plugin)

    def register(self, plugin: Any) -> None:
        """Register a host plugin.

        Raises:
            HostPluginError: If the plugin's hooks don't match the hookspecs or
                the plugin is already registered.
        """
        try:
            self._plugin_manager.register(plugin)
            self._plugin_manager.check_pending()
        except (pluggy.PluginValidationError, ValueError) as e:
            if isinstance(e, pluggy.PluginValidationError):
                self._plugin_manager.unregister(plugin=plugin)
            raise HostPluginError(f"Invalid host plugin {type(plugin).__name__}: {e}") from e

    def project_name(self) -> str:
        """Return the current project name, "default" if unknown or blank."""
        try:
            name = self._plugin_manager.hook.hecship_project_name()
        except Exception as e:
            logger.warning("Host project name hook failed", error=str(e))
            return DEFAULT_PROJECT_NAME
        if not name:
            return DEFAULT_PROJECT_NAME
        return str(name)

    def is_in_scope(self, url: str | None) -> bool:
        """Return whether url is in the target scope (False if unknown)."""
        if not url:
            return False
        try:
            answer = self._plugin_manager.hook.hecship_is_in_scope(url=url)
        except Exception as e:
            logger.warning("Host scope hook failed", url=url, error=str(e))
            return False
        return bool(answer)


class StaticHostPlugin:
    """Host plugin with a fixed project name and URL-prefix scope.

    Used by the command line, where there is no enclosing application.
    """

    def __init__(self, project_name: str | None = None, scope_prefixes: Sequence[str] = ()) -> None:
        self._project_name = project_name
        self._scope_prefixes = tuple(scope_prefixes)

    @hookimpl
    def hecship_project_name(self) -> str | None:
        return self._project_name

    @hookimpl
    def hecship_is_in_scope(self, url: str) -> bool | None:
        if not self._scope_prefixes:
            return None
        return url.startswith(self._scope_prefixes)
