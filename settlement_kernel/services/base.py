"""
BaseService -- shared constructor for kernel write services.

Kernel services receive the caller's ``Session`` and ``flush()`` their
writes; they never commit or roll back.  ``SettlementService`` owns the
transaction, which is what makes one settlement event all-or-nothing.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from settlement_kernel.config import SettlementConfig
from settlement_kernel.db.base import Base
from settlement_kernel.domain.clock import Clock, SystemClock

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Session, clock and configuration for one unit of work.

    ``ModelType`` names the table the service writes; reads go through
    ``settlement_kernel.selectors``.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: SettlementConfig | None = None,
    ):
        self.session = session
        self._clock = clock or SystemClock()
        self._config = config or SettlementConfig.with_defaults()
