"""Container control through the Portainer API."""

from opsdeck.portainer.client import ContainerAction, PortainerClient, container_status, health_color
from opsdeck.portainer.demux import demultiplex, strip_control_characters
from opsdeck.portainer.stats import ContainerStats, compute_stats
from opsdeck.portainer.tokens import Token, TokenManager

__all__ = [
    "ContainerAction",
    "ContainerStats",
    "PortainerClient",
    "Token",
    "TokenManager",
    "compute_stats",
    "container_status",
    "demultiplex",
    "health_color",
    "strip_control_characters",
]
