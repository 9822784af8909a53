"""Agent turn loop runtime."""

from .engine import SAFETY_LIMIT, AgentTurnLoop
from .loop_detection import LoopDetector
from .models import TurnLoopDeps

__all__ = ["AgentTurnLoop", "LoopDetector", "SAFETY_LIMIT", "TurnLoopDeps"]
