"""
Chaos Engine - Per-kind apply/recover actions and the kind registry

Components:
- BaseChaosImpl: Shared idempotence handling around the fault executor
- NetworkChaosImpl / HTTPChaosImpl / PodChaosImpl: Chaos actions per kind
- InMemoryFaultExecutor: Records faults instead of realising them
- ChaosKindRegistry: Explicit kind -> descriptor table built at start-up
"""
from .base import BaseChaosImpl
from .executor import InMemoryFaultExecutor
from .network import NetworkChaosImpl
from .http import HTTPChaosImpl, build_iptables_chains
from .pod import PodChaosImpl
from .registry import ChaosKindRegistry, TypeDescriptor, build_default_registry

__all__ = [
    'BaseChaosImpl',
    'InMemoryFaultExecutor',
    'NetworkChaosImpl',
    'HTTPChaosImpl',
    'build_iptables_chains',
    'PodChaosImpl',
    'ChaosKindRegistry',
    'TypeDescriptor',
    'build_default_registry',
]
