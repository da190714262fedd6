"""
Object Store - Optimistic-concurrency object storage for controller state

Components:
- BaseObjectStore: Subscriber fan-out and label matching shared by backends
- InMemoryObjectStore: Process-local store used for local runs and tests
- KubeObjectStore: Cluster API backed store (custom objects, pods, nodes)
"""
from .base import BaseObjectStore, matches_labels
from .memory import InMemoryObjectStore
from .kube import KubeObjectStore

__all__ = [
    'BaseObjectStore',
    'matches_labels',
    'InMemoryObjectStore',
    'KubeObjectStore',
]
