"""
Conflict resolution between this instance's state and an external write.

Resolvers answer one question: should the external version win?
"""
from .serializer import PersistenceMetadata


class ConflictResolver:
    """Strategy interface. Merge or prompt-based strategies plug in here."""

    def should_use_external(self, local: PersistenceMetadata, external: PersistenceMetadata) -> bool:
        raise NotImplementedError

    def explain(self, local: PersistenceMetadata, external: PersistenceMetadata) -> str:
        return "external" if self.should_use_external(local, external) else "local"


class LastWriteWinsResolver(ConflictResolver):
    """The later saved_at wins; ties keep the local version."""

    def should_use_external(self, local: PersistenceMetadata, external: PersistenceMetadata) -> bool:
        return external.saved_at > local.saved_at

    def explain(self, local: PersistenceMetadata, external: PersistenceMetadata) -> str:
        if self.should_use_external(local, external):
            return (
                f"external newer: {external.saved_at.isoformat()} by {external.instance_id} "
                f"> local {local.saved_at.isoformat()}"
            )
        return (
            f"local kept: {local.saved_at.isoformat()} "
            f">= external {external.saved_at.isoformat()} by {external.instance_id}"
        )
