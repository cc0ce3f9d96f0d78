"""Clients for the remote workflow provider."""

from .providers_base import ProviderClient
from .providers_runninghub import RunningHubClient

__all__ = [
    "ProviderClient",
    "RunningHubClient",
]
