"""Base classes for chaos actions"""
import logging
from abc import ABC
from typing import Any, Callable, List

from ..errors import FaultAlreadyAppliedError, FaultNotAppliedError
from ..interfaces import IChaosImpl, IFaultExecutor, IObjectStore
from ..models import Record, Target

logging.basicConfig(format='%(levelname)-5s | %(filename)s:%(lineno)-3d | %(message)s', level=logging.INFO, force=True)
logger = logging.getLogger(__name__)


def owner_of(obj: Any) -> str:
    """Identity of the experiment a fault belongs to, as seen by the executor"""
    return f"{obj.kind}/{obj.meta.namespace}/{obj.meta.name}"


class BaseChaosImpl(IChaosImpl, ABC):
    """Common plumbing for chaos actions backed by the fault executor"""

    def __init__(self, store: IObjectStore, executor: IFaultExecutor):
        self.store = store
        self.executor = executor

    @staticmethod
    def target_of(index: int, records: List[Record]) -> Target:
        return Target.parse_id(records[index].id)

    @staticmethod
    def ensure_applied(operation: Callable, *args):
        """Run an executor call, treating an identical fault already in place as success"""
        try:
            operation(*args)
        except FaultAlreadyAppliedError as e:
            logger.debug(f"Fault already applied: {e}")

    @staticmethod
    def ensure_recovered(operation: Callable, *args):
        """Run an executor call, treating a missing fault as success"""
        try:
            operation(*args)
        except FaultNotAppliedError as e:
            logger.debug(f"Fault already recovered: {e}")
