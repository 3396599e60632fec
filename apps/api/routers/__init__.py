"""Routers package."""

from . import (
    health,
    auth,
    coins,
    workspaces,
    projects,
    tasks,
    automations,
    notifications,
    ai,
    subscription,
    chat,
    search,
)
