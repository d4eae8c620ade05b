"""
deplorch - Dependency-ordered deployment orchestrator

Deploys a topology of interdependent components in forward-dependency
order, breaks circular references with placeholder-then-patch, waits for
each step to be durable and commits the resulting address manifest.
"""

__version__ = "0.1.0"
__author__ = "Local Pipeline Team"


__all__ = ["DeplorchConfig", "load_config", "get_deplorch_home"]

from .config import DeplorchConfig, load_config, get_deplorch_home
