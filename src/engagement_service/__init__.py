"""Engagement Service - task, verification, engagement and escrow lifecycle for a local-services marketplace."""

__version__ = "0.1.0"
