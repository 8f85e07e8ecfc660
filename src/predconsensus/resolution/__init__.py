"""Resolution processing."""

from predconsensus.resolution.processor import ResolutionProcessor, ResolutionResult

__all__ = ["ResolutionProcessor", "ResolutionResult"]
