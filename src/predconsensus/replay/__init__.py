"""Deterministic feed replay."""

from predconsensus.replay.engine import JsonlFeed, ReplayStats, replay_feed, replay_file, stream_feed_events

__all__ = ["JsonlFeed", "ReplayStats", "replay_feed", "replay_file", "stream_feed_events"]
