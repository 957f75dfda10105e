"""
LogStreamer - non-blocking sink for external process output.

Bytes written by a running process are buffered in memory and shipped to
the control-plane as chunks. A chunk is cut when the buffer reaches
MAX_BUFFER_SIZE inside write(), or by a ticker every FLUSH_INTERVAL while
anything is buffered. Chunks go onto a bounded queue drained by a single
uploader thread, so write() never waits on the network and chunks of one
stream reach the control-plane in the order they were cut.

While the queue is full no chunk is cut: bytes stay in the buffer and are
picked up by the next flush attempt, so nothing written before close() is
lost.
"""

import codecs
import logging
import queue
import time
from threading import Event, Lock, Thread
from typing import Union

from tendril.config.provider import AgentIdentity
from tendril.modules.api.models import LogChunk, StreamType
from tendril.modules.controlplane.client import ControlPlane

logger = logging.getLogger("tendril.logstream")

FLUSH_INTERVAL = 0.5  # seconds
MAX_BUFFER_SIZE = 10 * 1024  # 10 KiB
MAX_PENDING_CHUNKS = 256

_STOP = object()


class LogStreamer:
    """Buffered writer that ships its contents to the control-plane."""

    def __init__(
        self,
        client: ControlPlane,
        identity: AgentIdentity,
        provision_id: str,
        stream_type: StreamType,
        flush_interval: float = FLUSH_INTERVAL,
        max_buffer_size: int = MAX_BUFFER_SIZE,
        max_pending_chunks: int = MAX_PENDING_CHUNKS,
    ):
        """
        Initialize the streamer and start its ticker and uploader threads.

        Args:
            client: Control-plane client used by the uploader
            identity: Agent identity (cluster id and token for the hash)
            provision_id: Job the output belongs to
            stream_type: STDOUT, STDERR or SYSTEM
            flush_interval: Seconds between periodic flushes
            max_buffer_size: Buffer size that forces a flush inside write()
            max_pending_chunks: Bound of the upload queue
        """
        self.client = client
        self.identity = identity
        self.provision_id = provision_id
        self.stream_type = StreamType(stream_type)
        self.flush_interval = flush_interval
        self.max_buffer_size = max_buffer_size

        self.last_flush = time.monotonic()
        self.flush_count = 0
        self.deferred_flushes = 0

        self._buffer = bytearray()
        self._lock = Lock()
        self._closed = False
        # Keeps multi-byte characters split across chunk boundaries intact
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._pending: "queue.Queue" = queue.Queue(maxsize=max_pending_chunks)
        self._stop_ticker = Event()

        name = f"{self.stream_type.value.lower()}-{provision_id}"
        self._uploader = Thread(target=self._upload_loop, name=f"upload-{name}", daemon=True)
        self._ticker = Thread(target=self._tick_loop, name=f"flush-{name}", daemon=True)
        self._uploader.start()
        self._ticker.start()

    def __enter__(self) -> "LogStreamer":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    def write(self, data: Union[bytes, bytearray, str]) -> int:
        """
        Buffer data, flushing first if the size threshold is reached.

        Returns:
            Number of bytes accepted
        """
        if isinstance(data, str):
            data = data.encode("utf-8")

        with self._lock:
            if self._closed:
                raise ValueError("write to closed LogStreamer")

            self._buffer.extend(data)
            if len(self._buffer) >= self.max_buffer_size:
                self._flush_locked()

        return len(data)

    def flush(self) -> None:
        """Cut a chunk from whatever is buffered now."""
        with self._lock:
            if not self._closed:
                self._flush_locked()

    def close(self) -> None:
        """
        Stop the ticker, flush remaining bytes and wait for the uploader.

        Every byte written before close() has been handed to the
        control-plane client when this returns. Calling close() twice is a
        no-op.
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._stop_ticker.set()
            self._flush_locked(final=True)

        self._ticker.join()
        self._pending.put(_STOP)
        self._uploader.join()

    def _tick_loop(self) -> None:
        while not self._stop_ticker.wait(self.flush_interval):
            with self._lock:
                if self._closed:
                    return
                if self._buffer:
                    self._flush_locked()

    def _flush_locked(self, final: bool = False) -> None:
        """Move the buffer onto the upload queue. Caller must hold the lock."""
        if not self._buffer and not final:
            return

        # Only this method adds to the queue and it runs under the lock, so a
        # queue that is not full now still has room for the put below
        if not final and self._pending.full():
            self.deferred_flushes += 1
            return

        text = self._decoder.decode(bytes(self._buffer), final=final)
        self._buffer.clear()
        if not text:
            return

        self.last_flush = time.monotonic()
        self.flush_count += 1

        chunk = LogChunk(
            provision_id=self.provision_id,
            chunk=text,
            stream_type=self.stream_type,
            token_hash=self.identity.token_hash,
        )

        if final:
            # Blocking put is safe here: the uploader never takes the lock
            self._pending.put(chunk)
        else:
            self._pending.put_nowait(chunk)

    def _upload_loop(self) -> None:
        while True:
            chunk = self._pending.get()
            if chunk is _STOP:
                return
            self._ship(chunk)

    def _ship(self, chunk: LogChunk) -> None:
        try:
            result = self.client.append_log_chunk(
                self.identity.cluster_id,
                chunk.token_hash,
                chunk.provision_id,
                chunk.chunk,
                chunk.stream_type,
            )
        except Exception as e:
            logger.error(f"Failed to upload log chunk for provision {chunk.provision_id}: {e}")
            return

        if not result.ok:
            logger.error(f"Failed to upload log chunk for provision {chunk.provision_id}: {result}")

