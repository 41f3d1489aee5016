"""Apply subsystem — lock-protected mutation of a target environment."""

from dgk.apply.coordinator import ApplyCoordinator
from dgk.apply.lock import LockHandle, LockKey, LockManager
from dgk.apply.mutator import CommandMutator, Mutator, ProposedDiff
from dgk.apply.state import InMemoryStateStore, LockRecord, StateStore

__all__ = [
    "ApplyCoordinator",
    "CommandMutator",
    "InMemoryStateStore",
    "LockHandle",
    "LockKey",
    "LockManager",
    "LockRecord",
    "Mutator",
    "ProposedDiff",
    "StateStore",
]
