"""
Ownership and role policy for book operations.
"""

from enum import Enum

from catalog.models import BookRecord, Identity


class Operation(str, Enum):
    """Operations gated by the policy."""
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"


class OwnershipPolicy:
    """
    Decides whether an identity may perform an operation on a record.

    Owners may read and update their records. Deletion is reserved for
    admins, including for the record's own owner.
    """

    @staticmethod
    def can_access(identity: Identity, record: BookRecord, operation: Operation) -> bool:
        if identity.is_admin:
            return True
        if operation == Operation.DELETE:
            return False
        return identity.id == record.owner_id
