"""FastAPI dependency exposing the app's :class:`SyncContainer`."""

from __future__ import annotations

from fastapi import Request

from habitsync.container import SyncContainer


def get_container(request: Request) -> SyncContainer:  # noqa: D401 – dependency
    """Return the container attached to the running app."""

    return request.app.state.container
