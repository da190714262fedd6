"""
Target Selector - Resolves declarative selectors to pod and container targets
"""
from .base import TargetSelector, filter_by_mode

__all__ = [
    'TargetSelector',
    'filter_by_mode',
]
