"""
Exception hierarchy for mittorch.

Each collaborator raises its own family so the reconciliation engine can pick
a recovery policy by type instead of by message.
"""


class MittorchError(Exception):
    """Base class for all mittorch errors."""


class ConfigError(MittorchError):
    """The deploy configuration is missing, unreadable or invalid."""


class SyncError(MittorchError):
    """A repository operation (clone, HEAD lookup, remote lookup) failed."""


class UnauthorizedError(SyncError):
    """The remote rejected our credentials."""


class NotFoundError(SyncError):
    """The repository or branch does not exist (or is not visible)."""


class ApiError(SyncError):
    """The remote API answered with an unexpected status or body."""


class NetworkError(SyncError):
    """The remote could not be reached."""


class CheckoutMissingError(SyncError):
    """The local checkout does not exist or is not a git repository."""


class SpawnError(MittorchError):
    """A command could not be started."""


class CleanupError(MittorchError):
    """A checkout directory could not be removed."""
