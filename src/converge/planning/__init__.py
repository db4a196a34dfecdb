from .planner import Planner, compute_fingerprint

__all__ = ["Planner", "compute_fingerprint"]
