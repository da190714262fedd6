"""
Chaos Controller - Reconciles chaos experiments and orchestrates chaos workflows
"""
from .main import ChaosControllerManager
from .config import ControllerConfig
from .chaos_engine import build_default_registry

__version__ = "0.1.0"

__all__ = [
    'ChaosControllerManager',
    'ControllerConfig',
    'build_default_registry',
]
