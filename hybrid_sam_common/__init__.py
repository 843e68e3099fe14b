"""Instrumentation shared by hybrid_sam front ends (KPI events, latency stats)."""
__all__ = ["kpi_logging", "latency"]
