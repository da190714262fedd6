"""HTTP chaos: routes container port traffic through dedicated chains"""
import logging
from typing import Any, List

from ..errors import ActionError, NotFoundError
from ..models import (
    KIND_POD, Chain, ChainCommand, HTTPChaosAction, HTTPChaosSpec, NamespacedName, Netem, Record,
    RecordPhase
)
from ..utils.parsing import parse_duration
from .base import BaseChaosImpl, owner_of

logger = logging.getLogger(__name__)

INPUT_CHAIN = "HTTP-CHAOS-INPUT"
OUTPUT_CHAIN = "HTTP-CHAOS-OUTPUT"


def build_iptables_chains(action: HTTPChaosAction, percent: str, ports: List[int]) -> List[Chain]:
    """
    Build the ordered chain operations for one pod:

    1. -N HTTP-CHAOS-INPUT, -N HTTP-CHAOS-OUTPUT
    2. -A INPUT --dport <ports> -j HTTP-CHAOS-INPUT
    3. -A OUTPUT --sport <ports> -j HTTP-CHAOS-OUTPUT
    4. abort/mixed: -A HTTP-CHAOS-INPUT --probability <percent> -j DROP
    5. abort/mixed: -A HTTP-CHAOS-OUTPUT --probability <percent> -j DROP

    Later rules jump to chains created by earlier ones, so order matters.
    """
    port_list = ",".join(str(port) for port in ports)
    chains = [
        Chain(ChainCommand.NEW, INPUT_CHAIN),
        Chain(ChainCommand.NEW, OUTPUT_CHAIN),
        Chain(ChainCommand.ADD, "INPUT", dport=port_list, action=INPUT_CHAIN),
        Chain(ChainCommand.ADD, "OUTPUT", sport=port_list, action=OUTPUT_CHAIN),
    ]
    if action in (HTTPChaosAction.ABORT, HTTPChaosAction.MIXED):
        chains.append(Chain(ChainCommand.ADD, INPUT_CHAIN, action="DROP", probability=percent))
        chains.append(Chain(ChainCommand.ADD, OUTPUT_CHAIN, action="DROP", probability=percent))
    return chains


class HTTPChaosImpl(BaseChaosImpl):

    def _pod_ports(self, index: int, records: List[Record]) -> List[int]:
        target = self.target_of(index, records)
        try:
            pod = self.store.get(KIND_POD, NamespacedName(target.namespace, target.pod))
        except NotFoundError:
            raise ActionError(f"pod {target.namespace}/{target.pod} no longer exists")

        ports = []
        for container in pod.containers:
            ports.extend(container.ports)
        if not ports:
            raise ActionError(f"pod {target.namespace}/{target.pod} exposes no container ports")
        return ports

    def apply(self, index: int, records: List[Record], obj: Any) -> RecordPhase:
        spec: HTTPChaosSpec = obj.spec
        target = self.target_of(index, records)
        owner = owner_of(obj)

        chains = build_iptables_chains(spec.action, spec.percent, self._pod_ports(index, records))
        self.ensure_applied(self.executor.set_iptables_chains, target, owner, chains)

        if spec.action in (HTTPChaosAction.DELAY, HTTPChaosAction.MIXED):
            delay_us = int(parse_duration(spec.delay).total_seconds() * 1000 * 1000)
            self.ensure_applied(self.executor.set_netem, target, owner, Netem(time=delay_us))

        logger.debug(f"Applied http {spec.action.value} on {target.id} for {owner}")
        return RecordPhase.INJECTED

    def recover(self, index: int, records: List[Record], obj: Any) -> RecordPhase:
        spec: HTTPChaosSpec = obj.spec
        target = self.target_of(index, records)
        owner = owner_of(obj)

        self.ensure_recovered(self.executor.clear_iptables_chains, target, owner)
        if spec.action in (HTTPChaosAction.DELAY, HTTPChaosAction.MIXED):
            self.ensure_recovered(self.executor.clear_traffic_control, target, owner)
        return RecordPhase.NOT_INJECTED
