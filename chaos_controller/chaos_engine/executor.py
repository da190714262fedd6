"""
In-memory fault executor

Stands in for the node-level daemon: faults are recorded per (target, owner)
instead of being realised. Setting an identical fault twice raises
FaultAlreadyAppliedError and clearing a missing one raises
FaultNotAppliedError, the same signals the daemon returns.
"""
import logging
import threading
from typing import Any, Dict, List, Tuple

from ..errors import FaultAlreadyAppliedError, FaultNotAppliedError
from ..interfaces import IFaultExecutor
from ..models import Chain, Netem, Target, Tbf

logger = logging.getLogger(__name__)


class InMemoryFaultExecutor(IFaultExecutor):
    """Fault executor used for dry runs and tests"""

    def __init__(self):
        self.chains: Dict[Tuple[str, str], List[Chain]] = {}
        self.ipsets: Dict[Tuple[str, str], Dict[str, List[str]]] = {}
        self.traffic_control: Dict[Tuple[str, str], Any] = {}
        self.killed_containers: List[str] = []
        self.calls: List[Tuple[str, str]] = []  # (method, target id)
        self._lock = threading.Lock()

    def _record_call(self, method: str, target: Target):
        self.calls.append((method, target.id))
        logger.debug(f"{method} on {target.id}")

    def set_iptables_chains(self, target: Target, owner: str, chains: List[Chain]) -> None:
        with self._lock:
            self._record_call('set_iptables_chains', target)
            key = (target.id, owner)
            if self.chains.get(key) == chains:
                raise FaultAlreadyAppliedError(f"iptables chains of {owner} already set on {target.id}")
            self.chains[key] = list(chains)

    def clear_iptables_chains(self, target: Target, owner: str) -> None:
        with self._lock:
            self._record_call('clear_iptables_chains', target)
            if self.chains.pop((target.id, owner), None) is None:
                raise FaultNotAppliedError(f"no iptables chains of {owner} on {target.id}")

    def set_ipset(self, target: Target, owner: str, name: str, ips: List[str]) -> None:
        with self._lock:
            self._record_call('set_ipset', target)
            ipsets = self.ipsets.setdefault((target.id, owner), {})
            if ipsets.get(name) == list(ips):
                raise FaultAlreadyAppliedError(f"ipset {name} of {owner} already set on {target.id}")
            ipsets[name] = list(ips)

    def clear_ipsets(self, target: Target, owner: str) -> None:
        with self._lock:
            self._record_call('clear_ipsets', target)
            if self.ipsets.pop((target.id, owner), None) is None:
                raise FaultNotAppliedError(f"no ipsets of {owner} on {target.id}")

    def _set_tc(self, method: str, target: Target, owner: str, qdisc: Any):
        with self._lock:
            self._record_call(method, target)
            key = (target.id, owner)
            if self.traffic_control.get(key) == qdisc:
                raise FaultAlreadyAppliedError(f"traffic control of {owner} already set on {target.id}")
            self.traffic_control[key] = qdisc

    def set_tbf(self, target: Target, owner: str, tbf: Tbf) -> None:
        self._set_tc('set_tbf', target, owner, tbf)

    def set_netem(self, target: Target, owner: str, netem: Netem) -> None:
        self._set_tc('set_netem', target, owner, netem)

    def clear_traffic_control(self, target: Target, owner: str) -> None:
        with self._lock:
            self._record_call('clear_traffic_control', target)
            if self.traffic_control.pop((target.id, owner), None) is None:
                raise FaultNotAppliedError(f"no traffic control of {owner} on {target.id}")

    def kill_container(self, target: Target) -> None:
        with self._lock:
            self._record_call('kill_container', target)
            self.killed_containers.append(target.id)

    def call_count(self, method: str) -> int:
        with self._lock:
            return sum(1 for name, _ in self.calls if name == method)

    def faults_on(self, target_id: str) -> Dict[str, Any]:
        """Current faults on a target keyed by owner"""
        with self._lock:
            faults = {}
            for (tid, owner), chains in self.chains.items():
                if tid == target_id:
                    faults.setdefault(owner, {})['chains'] = list(chains)
            for (tid, owner), ipsets in self.ipsets.items():
                if tid == target_id:
                    faults.setdefault(owner, {})['ipsets'] = {name: list(ips) for name, ips in ipsets.items()}
            for (tid, owner), qdisc in self.traffic_control.items():
                if tid == target_id:
                    faults.setdefault(owner, {})['tc'] = qdisc
            return faults
