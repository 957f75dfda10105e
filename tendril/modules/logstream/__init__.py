"""
Logstream Module - Black Box Interface

Purpose: Ship external process output to the control-plane in near-real time
Interface: LogStreamer.write(), LogStreamer.flush(), LogStreamer.close()
Hidden: Buffering thresholds, periodic ticker, bounded upload queue

Can be replaced with any writer that accepts bytes and flushes on close.
"""

from .streamer import FLUSH_INTERVAL, MAX_BUFFER_SIZE, LogStreamer

__all__ = ["FLUSH_INTERVAL", "MAX_BUFFER_SIZE", "LogStreamer"]
