"""
Base interfaces and abstract classes for all major components
"""
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional

from .models import (
    Chain, Event, EventType, NamespacedName, Netem, PodSelector, Record,
    RecordPhase, Result, Target, Tbf
)


class IObjectStore(ABC):
    """Interface for the backing object store (cluster API or in-memory)"""

    @abstractmethod
    def get(self, kind: str, key: NamespacedName) -> Any:
        """Fetch the latest copy of an object, raising NotFoundError when absent"""
        pass

    @abstractmethod
    def list(self, kind: str, namespace: Optional[str] = None,
             labels: Optional[Dict[str, str]] = None) -> List[Any]:
        """List objects of a kind, optionally scoped by namespace and label equality"""
        pass

    @abstractmethod
    def create(self, obj: Any) -> Any:
        """Create an object, raising AlreadyExistsError on a duplicate key"""
        pass

    @abstractmethod
    def update(self, obj: Any) -> Any:
        """Replace metadata and spec, raising ConflictError on a stale resource version"""
        pass

    @abstractmethod
    def update_status(self, obj: Any) -> Any:
        """Replace the status, raising ConflictError on a stale resource version"""
        pass

    @abstractmethod
    def delete(self, kind: str, key: NamespacedName) -> None:
        """Delete an object, raising NotFoundError when absent"""
        pass

    @abstractmethod
    def subscribe(self, callback: Callable[[str, Any], None]) -> None:
        """Register a callback invoked with (event_type, object) after every change"""
        pass


class IChaosImpl(ABC):
    """Per-kind apply/recover capability for one record of an experiment"""

    @abstractmethod
    def apply(self, index: int, records: List[Record], obj: Any) -> RecordPhase:
        """Inject the fault for records[index] and return the resulting phase"""
        pass

    @abstractmethod
    def recover(self, index: int, records: List[Record], obj: Any) -> RecordPhase:
        """Withdraw the fault for records[index] and return the resulting phase"""
        pass


class IFaultExecutor(ABC):
    """Interface for the external agent that realises faults on targets"""

    @abstractmethod
    def set_iptables_chains(self, target: Target, owner: str, chains: List[Chain]) -> None:
        pass

    @abstractmethod
    def clear_iptables_chains(self, target: Target, owner: str) -> None:
        pass

    @abstractmethod
    def set_ipset(self, target: Target, owner: str, name: str, ips: List[str]) -> None:
        pass

    @abstractmethod
    def clear_ipsets(self, target: Target, owner: str) -> None:
        pass

    @abstractmethod
    def set_tbf(self, target: Target, owner: str, tbf: Tbf) -> None:
        pass

    @abstractmethod
    def set_netem(self, target: Target, owner: str, netem: Netem) -> None:
        pass

    @abstractmethod
    def clear_traffic_control(self, target: Target, owner: str) -> None:
        pass

    @abstractmethod
    def kill_container(self, target: Target) -> None:
        pass


class ITargetSelector(ABC):
    """Resolves a declarative selector to the live set of targets"""

    @abstractmethod
    def select(self, pod_selector: PodSelector) -> List[Target]:
        pass


class IReconciler(ABC):
    """One level-triggered reconcile pass for a single object key"""

    @abstractmethod
    def reconcile(self, request: NamespacedName) -> Result:
        pass


class IEventRecorder(ABC):
    """Records user-visible events against an object"""

    @abstractmethod
    def event(self, obj: Any, event_type: EventType, reason: str, message: str) -> Event:
        pass
