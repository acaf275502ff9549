"""pluggy hook specifications for host integration.

The exporter runs inside a larger application that knows things the
exporter cannot: the name of the current project and whether a URL is in
the user's target scope. The application answers these through plugins.

Usage (implementing a host plugin):
    from hecship.exporter.hookspecs import hookimpl

    class MyHostPlugin:
        @hookimpl
        def hecship_project_name(self):
            return "acme-assessment"

        @hookimpl
        def hecship_is_in_scope(self, url):
            return url.startswith("https://acme.example/")
"""

import pluggy

PROJECT_NAME = "hecship"

hookspec = pluggy.HookspecMarker(PROJECT_NAME)
hookimpl = pluggy.HookimplMarker(PROJECT_NAME)


class HecshipHostSpec:
    """Hook specifications answered by the enclosing application."""

    @hookspec(firstresult=True)
    def hecship_project_name(self) -> str | None:  # type: ignore[empty-body]
        """Return the current project name, or None to defer."""

    @hookspec(firstresult=True)
    def hecship_is_in_scope(self, url: str) -> bool | None:  # type: ignore[empty-body]
        """Return whether url is in the target scope, or None to defer."""
