"""Network chaos: netem and tbf qdiscs, or partition chains"""
import logging
import zlib
from typing import Any, List

from ..errors import NotFoundError
from ..models import (
    KIND_POD, Chain, ChainCommand, Direction, NamespacedName, NetworkChaosAction, NetworkChaosSpec, Netem, Record,
    RecordPhase, Target
)
from .base import BaseChaosImpl, owner_of

logger = logging.getLogger(__name__)

TARGET_SELECTOR_KEY = ".target"


def netem_for_action(spec: NetworkChaosSpec) -> Netem:
    if spec.action == NetworkChaosAction.DELAY:
        return spec.delay.to_netem()
    if spec.action == NetworkChaosAction.LOSS:
        return spec.loss.to_netem()
    if spec.action == NetworkChaosAction.DUPLICATE:
        return spec.duplicate.to_netem()
    if spec.action == NetworkChaosAction.CORRUPT:
        return spec.corrupt.to_netem()
    return spec.to_netem()


def partition_ipset_name(obj: Any) -> str:
    """ipset holding the partition peers, kept within the 31 character ipset limit"""
    return f"{obj.meta.name[:21]}_tgt_{zlib.crc32(owner_of(obj).encode()) % 10000:04d}"


def build_partition_chains(obj: Any) -> List[Chain]:
    spec: NetworkChaosSpec = obj.spec
    ipset = partition_ipset_name(obj) if spec.target is not None else ""
    prefix = obj.meta.name[:20].upper()

    chains = []
    if spec.direction in (Direction.TO, Direction.BOTH):
        chains.append(Chain(ChainCommand.NEW, f"{prefix}-OUTPUT"))
        chains.append(Chain(ChainCommand.ADD, "OUTPUT", action=f"{prefix}-OUTPUT"))
        chains.append(Chain(ChainCommand.ADD, f"{prefix}-OUTPUT", action="DROP", ipset=ipset))
    if spec.direction in (Direction.FROM, Direction.BOTH):
        chains.append(Chain(ChainCommand.NEW, f"{prefix}-INPUT"))
        chains.append(Chain(ChainCommand.ADD, "INPUT", action=f"{prefix}-INPUT"))
        chains.append(Chain(ChainCommand.ADD, f"{prefix}-INPUT", action="DROP", ipset=ipset))
    return chains


class NetworkChaosImpl(BaseChaosImpl):
    """Applies network faults on source records; partition peers are passive"""

    def target_ips(self, records: List[Record]) -> List[str]:
        """Pod IPs of the partition peers, the contents of the source side ipset"""
        ips = set()
        for record in records:
            if record.selector_key != TARGET_SELECTOR_KEY:
                continue
            peer = Target.parse_id(record.id)
            try:
                pod = self.store.get(KIND_POD, NamespacedName(peer.namespace, peer.pod))
            except NotFoundError:
                logger.warning(f"Partition peer {peer.id} no longer exists, leaving it out of the ipset")
                continue
            if not pod.pod_ip:
                logger.warning(f"Partition peer {peer.id} has no pod IP yet, leaving it out of the ipset")
                continue
            ips.add(pod.pod_ip)
        return sorted(ips)

    def apply(self, index: int, records: List[Record], obj: Any) -> RecordPhase:
        record = records[index]
        if record.selector_key == TARGET_SELECTOR_KEY:
            # Peers only appear in the ipset of the source side
            return RecordPhase.INJECTED

        spec: NetworkChaosSpec = obj.spec
        target = self.target_of(index, records)
        owner = owner_of(obj)

        if spec.action == NetworkChaosAction.PARTITION:
            if spec.target is not None:
                self.ensure_applied(self.executor.set_ipset, target, owner, partition_ipset_name(obj),
                                    self.target_ips(records))
            self.ensure_applied(self.executor.set_iptables_chains, target, owner, build_partition_chains(obj))
        elif spec.action == NetworkChaosAction.BANDWIDTH:
            self.ensure_applied(self.executor.set_tbf, target, owner, spec.bandwidth.to_tbf())
        else:
            self.ensure_applied(self.executor.set_netem, target, owner, netem_for_action(spec))

        logger.debug(f"Applied {spec.action.value} on {target.id} for {owner}")
        return RecordPhase.INJECTED

    def recover(self, index: int, records: List[Record], obj: Any) -> RecordPhase:
        record = records[index]
        if record.selector_key == TARGET_SELECTOR_KEY:
            return RecordPhase.NOT_INJECTED

        target = self.target_of(index, records)
        owner = owner_of(obj)
        if obj.spec.action == NetworkChaosAction.PARTITION:
            self.ensure_recovered(self.executor.clear_iptables_chains, target, owner)
            # Chains reference the ipset, so it goes after them
            if obj.spec.target is not None:
                self.ensure_recovered(self.executor.clear_ipsets, target, owner)
        else:
            self.ensure_recovered(self.executor.clear_traffic_control, target, owner)

        logger.debug(f"Recovered {obj.spec.action.value} on {target.id} for {owner}")
        return RecordPhase.NOT_INJECTED
