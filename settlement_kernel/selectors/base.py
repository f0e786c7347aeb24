"""
Module: settlement_kernel.selectors.base
Responsibility: Shared base for read-only queries.
Architecture position: Kernel > Selectors.  Imports db/, models/ and
    domain/ only; never services/ or outer layers.

Selectors never add, delete, flush or commit.  They return frozen domain
snapshots, not ORM instances, and run inside the caller's transaction.
"""

from abc import ABC
from collections.abc import Mapping
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from settlement_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseSelector(ABC, Generic[ModelType]):
    """
    Read-only access to ``ModelType`` rows.

    ``aliases`` maps legacy tender labels onto canonical ones when persisted
    tender ledgers are decoded.
    """

    def __init__(self, session: Session, aliases: Mapping[str, str] | None = None):
        self.session = session
        self._aliases = aliases
