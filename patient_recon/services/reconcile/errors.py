from __future__ import annotations


class ReconcileError(RuntimeError):
    """Precondition failure that aborts a whole run."""


class ConfigError(ReconcileError):
    pass


class SourceFileError(ReconcileError):
    pass


class ArtifactError(ReconcileError):
    pass


class PendingBatchError(ReconcileError):
    pass


class MissingCreatorError(ReconcileError):
    def __init__(self, created_by_id: str) -> None:
        super().__init__(f"User with ID {created_by_id} does not exist in the database.")
        self.created_by_id = created_by_id
