"""
Workflows for the deal-sourcing pipeline

This package contains high-level workflow orchestration:
- pipeline.py: Per-user stage orchestrator
- scheduler.py: APScheduler wiring
- outreach_queue.py: Outreach queueing and dispatch
- investor_discovery.py: Weekly investor import

Usage:
    from workflows.pipeline import DealPipeline
    async with DealPipeline() as pipeline:
        report = await pipeline.run_discovery()
"""

# Lazy imports to avoid circular dependencies
__all__ = [
    "DealPipeline",
    "PipelineConfig",
    "StageReport",
    "SettingsSnapshot",
    "build_scheduler",
]


def __getattr__(name):
    """Lazy import to avoid circular dependencies."""
    if name in ("DealPipeline", "PipelineConfig", "StageReport"):
        from workflows import pipeline
        return getattr(pipeline, name)
    elif name == "SettingsSnapshot":
        from workflows.settings import SettingsSnapshot
        return SettingsSnapshot
    elif name == "build_scheduler":
        from workflows.scheduler import build_scheduler
        return build_scheduler
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
