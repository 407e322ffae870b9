"""Statistics tracking and reporting for the relay."""

from __future__ import annotations

import threading
import time
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .service import RelayService


class StatsManager:
    """
    Manages relay statistics collection and reporting.

    Tracks counters for:
    - Connections accepted/closed
    - Frames and bytes in/out
    - Errors sent and rate limiting events
    - Logins and displaced logins
    - Messages, announcements and file transfers relayed
    - Send failures
    """

    def __init__(self, hub: RelayService) -> None:
        self.hub = hub
        self._lock = threading.Lock()

        self.started_wall_time: float | None = None
        self.started_monotonic: float | None = None

        self._counters: dict[str, int] = {
            "connections": 0,
            "disconnects": 0,
            "frames_in": 0,
            "frames_bad": 0,
            "bytes_in": 0,
            "bytes_out": 0,
            "errors_sent": 0,
            "rate_limited": 0,
            "logins": 0,
            "displaced": 0,
            "msgs_forwarded": 0,
            "announcements_forwarded": 0,
            "file_metas_relayed": 0,
            "chunks_relayed": 0,
            "chunks_rejected": 0,
            "send_failures": 0,
            "sends_skipped": 0,
        }

    def set_start_time(self) -> None:
        """Set the start time for uptime calculations."""
        self.started_wall_time = time.time()
        self.started_monotonic = time.monotonic()

    def inc(self, key: str, delta: int = 1) -> None:
        """Increment a counter by the given delta."""
        with self._lock:
            self._counters[key] = int(self._counters.get(key, 0)) + int(delta)

    def get(self, key: str) -> int:
        with self._lock:
            return int(self._counters.get(key, 0))

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return dict(self._counters)

    def format_stats(self) -> str:
        """Format current statistics as a human-readable string."""
        from . import __version__

        now_mono = time.monotonic()
        started_mono = self.started_monotonic
        uptime_s = (now_mono - started_mono) if started_mono is not None else 0.0

        session_stats = self.hub.session_manager.get_stats()
        c = self.snapshot()
        cfg = self.hub.config

        lines: list[str] = []
        lines.append(f"campusnet {__version__} stats")
        lines.append(f"uptime_s={uptime_s:.1f}")
        lines.append(
            f"clients_total={session_stats['total']} "
            f"clients_authenticated={session_stats['authenticated']}"
        )
        lines.append(
            f"limits: rate_limit_msgs_per_minute={cfg.rate_limit_msgs_per_minute} "
            f"max_chunk_chars={cfg.max_chunk_chars} "
            f"max_frame_bytes={cfg.max_frame_bytes} "
            f"duplicate_login={cfg.duplicate_login}"
        )
        lines.append(
            "io: connections={} disconnects={} frames_in={} frames_bad={} bytes_in={} bytes_out={}".format(
                c.get("connections", 0),
                c.get("disconnects", 0),
                c.get("frames_in", 0),
                c.get("frames_bad", 0),
                c.get("bytes_in", 0),
                c.get("bytes_out", 0),
            )
        )
        lines.append(
            "events: logins={} displaced={} msgs_fwd={} announcements_fwd={} errors_sent={} rate_limited={}".format(
                c.get("logins", 0),
                c.get("displaced", 0),
                c.get("msgs_forwarded", 0),
                c.get("announcements_forwarded", 0),
                c.get("errors_sent", 0),
                c.get("rate_limited", 0),
            )
        )
        lines.append(
            "files: metas={} chunks={} chunks_rejected={}".format(
                c.get("file_metas_relayed", 0),
                c.get("chunks_relayed", 0),
                c.get("chunks_rejected", 0),
            )
        )
        lines.append(
            "delivery: send_failures={} sends_skipped={}".format(
                c.get("send_failures", 0),
                c.get("sends_skipped", 0),
            )
        )

        return "\n".join(lines)
