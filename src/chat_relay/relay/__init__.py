"""Relay package: runs chat turns and re-frames provider output for clients."""

from chat_relay.relay.orchestrator import ChatTurn, RelayOrchestrator, TurnPhase

__all__ = ["ChatTurn", "RelayOrchestrator", "TurnPhase"]
