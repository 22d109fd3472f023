"""Diskwright clone engine."""

from diskwright.clone.executor import CloneExecutor
from diskwright.clone.strategy import CloneStrategySelector
from diskwright.clone.verifier import CloneVerifier

__all__ = ["CloneExecutor", "CloneStrategySelector", "CloneVerifier"]
