"""
Chaos kind registry

An explicit kind -> descriptor table, built once at process start and handed
to the components that need it (manifest codec, cluster store, controller
manager). Nothing registers itself at import time.
"""
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional

from ..errors import UnsupportedKindError
from ..interfaces import IChaosImpl, IFaultExecutor, IObjectStore
from ..manifests import (
    dump_http_chaos_spec, dump_network_chaos_spec, dump_pod_chaos_spec,
    parse_http_chaos_spec, parse_network_chaos_spec, parse_pod_chaos_spec
)
from .http import HTTPChaosImpl
from .network import NetworkChaosImpl
from .pod import PodChaosImpl


@dataclass(frozen=True)
class TypeDescriptor:
    """Everything the controller needs to know about one chaos kind"""
    kind: str
    plural: str
    parse_spec: Callable[[dict], Any]
    dump_spec: Callable[[Any], dict]
    build_impl: Callable[[IObjectStore, IFaultExecutor], IChaosImpl]


class ChaosKindRegistry:

    def __init__(self, descriptors: Optional[Iterable[TypeDescriptor]] = None):
        self._descriptors: Dict[str, TypeDescriptor] = {}
        for descriptor in descriptors or []:
            self.register(descriptor)

    def register(self, descriptor: TypeDescriptor):
        if descriptor.kind in self._descriptors:
            raise ValueError(f"chaos kind {descriptor.kind} registered twice")
        self._descriptors[descriptor.kind] = descriptor

    def get(self, kind: str) -> TypeDescriptor:
        try:
            return self._descriptors[kind]
        except KeyError:
            raise UnsupportedKindError(kind)

    def __contains__(self, kind: str) -> bool:
        return kind in self._descriptors

    def kinds(self) -> List[str]:
        return list(self._descriptors)


def build_default_registry() -> ChaosKindRegistry:
    return ChaosKindRegistry([
        TypeDescriptor(
            kind="NetworkChaos",
            plural="networkchaos",
            parse_spec=parse_network_chaos_spec,
            dump_spec=dump_network_chaos_spec,
            build_impl=NetworkChaosImpl,
        ),
        TypeDescriptor(
            kind="HTTPChaos",
            plural="httpchaos",
            parse_spec=parse_http_chaos_spec,
            dump_spec=dump_http_chaos_spec,
            build_impl=HTTPChaosImpl,
        ),
        TypeDescriptor(
            kind="PodChaos",
            plural="podchaos",
            parse_spec=parse_pod_chaos_spec,
            dump_spec=dump_pod_chaos_spec,
            build_impl=PodChaosImpl,
        ),
    ])
