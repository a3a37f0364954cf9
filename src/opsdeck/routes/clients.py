"""Request-scoped access to the upstream clients held on app state."""

from fastapi import Request

from opsdeck.portainer.client import PortainerClient
from opsdeck.runner.client import RunnerClient


def get_runner(request: Request) -> RunnerClient:
    return request.app.state.runner


def get_portainer(request: Request) -> PortainerClient:
    return request.app.state.portainer
