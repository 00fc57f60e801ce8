"""Route table for the gateway and the index page that lists it.

The same descriptors drive route registration in ``create_app`` and the
links rendered on ``GET /``, so the directory can never drift from what
is actually served.
"""

from __future__ import annotations

from html import escape
from typing import Iterable, Union

from pydantic import BaseModel, ConfigDict, Field


class ScriptRoute(BaseModel):
    """A POST route that runs a script with the request's two fields."""

    model_config = ConfigDict(frozen=True)

    path: str = Field(description="URL path, e.g. '/base64nonquery'")
    script: str = Field(description="Script filename in the working directory")
    result_field: str = Field(description="Name of the single field in the JSON reply")

    @property
    def name(self) -> str:
        return self.path.lstrip("/")


class ShellRoute(BaseModel):
    """A GET route that runs a fixed script with no arguments."""

    model_config = ConfigDict(frozen=True)

    path: str
    script: str

    @property
    def name(self) -> str:
        return self.path.lstrip("/")


Route = Union[ScriptRoute, ShellRoute]


SHELL_ROUTES: tuple[ShellRoute, ...] = (
    ShellRoute(path="/listdbs", script="psql_listdbs.sh"),
    ShellRoute(path="/version", script="psql_version.sh"),
)

SCRIPT_ROUTES: tuple[ScriptRoute, ...] = (
    ScriptRoute(
        path="/base64querypostbase64return",
        script="base64_query_base64_return.sh",
        result_field="base64ResultsObj",
    ),
    ScriptRoute(
        path="/base64postjsonreturn",
        script="base64_query_json_return.sh",
        result_field="jsonResultsObj",
    ),
    ScriptRoute(
        path="/base64nonquery",
        script="base64_non_query.sh",
        result_field="jsonResultsObj",
    ),
)

ROUTES: tuple[Route, ...] = SHELL_ROUTES + SCRIPT_ROUTES


def route_names(routes: Iterable[Route] = ROUTES) -> list[str]:
    return [route.name for route in routes]


def render_index(base_url: str, routes: Iterable[Route] = ROUTES) -> str:
    """Render the landing page: one link per route under ``base_url``."""
    rows = []
    for name in route_names(routes):
        href = escape(base_url + name, quote=True)
        rows.append(
            "    <tr>\n"
            "      <td>\n"
            f"        <a target='_blank' href='{href}'>{escape(name)}</a>\n"
            "      </td>\n"
            "    </tr>\n"
        )
    return (
        "<div>\n"
        "<table>\n"
        "  <tbody>\n"
        "    <tr>\n"
        "      <th>\n"
        "        PostgreSql API Methods\n"
        "      </th>\n"
        "    </tr>\n"
        + "".join(rows)
        + "  </tbody>\n"
        "</table>\n"
        "</div>\n"
    )
