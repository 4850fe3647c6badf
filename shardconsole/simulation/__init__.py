"""Simulation collaborator interface and the in-memory reference world."""

from shardconsole.simulation.base import Account, Actor, Simulation
from shardconsole.simulation.world import InMemoryWorld

__all__ = ["Account", "Actor", "InMemoryWorld", "Simulation"]
