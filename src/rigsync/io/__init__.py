"""Recorded-data input for the synchronization engine."""

from .video import VideoSet, replay_into_engine

__all__ = ["VideoSet", "replay_into_engine"]
