"""Provisioning collaborators."""

from stackgraph.providers.base import Provider, ProviderTable
from stackgraph.providers.parameter import ParameterProvider
from stackgraph.providers.simulated import SimulatedFailure, SimulatedProvider

__all__ = [
    "Provider",
    "ProviderTable",
    "ParameterProvider",
    "SimulatedFailure",
    "SimulatedProvider",
]
