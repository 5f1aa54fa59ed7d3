"""Live fan-out of tracker updates to dashboard connections."""

from .hub import BroadcastHub, DroppedSubscriber, HeartbeatWorker, Subscriber

__all__ = ["BroadcastHub", "DroppedSubscriber", "HeartbeatWorker", "Subscriber"]
