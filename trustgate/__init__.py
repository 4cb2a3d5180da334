"""Admission types, pod-spec extraction from workload objects, and signed-image digest resolution."""

__version__ = "0.1.0"
__all__ = ["controller", "kubernetes", "trust"]