"""Pod chaos: pod kill and container kill"""
import logging
from typing import Any, List

from ..errors import NotFoundError
from ..models import KIND_POD, NamespacedName, PodChaosAction, Record, RecordPhase
from .base import BaseChaosImpl

logger = logging.getLogger(__name__)


class PodChaosImpl(BaseChaosImpl):
    """Kills are one-shot, so recovery has nothing to withdraw"""

    def apply(self, index: int, records: List[Record], obj: Any) -> RecordPhase:
        target = self.target_of(index, records)

        if obj.spec.action == PodChaosAction.POD_KILL:
            try:
                self.store.delete(KIND_POD, NamespacedName(target.namespace, target.pod))
                logger.info(f"Killed pod {target.id}")
            except NotFoundError:
                logger.debug(f"Pod {target.id} already gone")
        else:
            self.executor.kill_container(target)
            logger.info(f"Killed container {target.id}")

        return RecordPhase.INJECTED

    def recover(self, index: int, records: List[Record], obj: Any) -> RecordPhase:
        return RecordPhase.NOT_INJECTED
