"""
Detection loop.

Reads frames from a FrameSource, runs one detector synchronously on each
frame, maps successful results onto the virtual desktop and hands them to the
registered callbacks (the automation layer, a preview window, ...).
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Union

from capture.base import FrameSource
from detection.base import Detector
from models.detection import DetectionResult
from models.frame import FrameData
from screen.mapper import VirtualDesktop

LoopCallback = Callable[[FrameData, List[DetectionResult]], None]


@dataclass
class LoopConfig:
    """
    Configuration for the detection loop.

    Attributes:
        max_consecutive_failures: Empty reads in a row before stopping.
        max_frames: Stop after this many processed frames (None = unbounded).
        retry_delay: Seconds to wait after an empty read.
        stats_log_interval: Seconds between status log messages.
    """
    max_consecutive_failures: int = 10
    max_frames: Optional[int] = None
    retry_delay: float = 0.5
    stats_log_interval: float = 60.0


@dataclass
class LoopStats:
    """Runtime statistics for the loop."""
    frame_count: int = 0
    hit_count: int = 0
    consecutive_failures: int = 0
    start_time: float = field(default_factory=time.time)
    last_stats_log_time: float = field(default_factory=time.time)


class DetectionLoop:
    """
    Synchronous capture -> detect -> map -> callbacks loop.

    At most one detect() is in flight; callers that need responsiveness run
    the loop on a worker thread and call stop() from elsewhere.

    Example:
        loop = DetectionLoop(CallableFrameSource(grab_screen), matcher, desktop)
        loop.add_callback(lambda frame_data, results: click(results[0]))
        loop.run()
    """

    def __init__(
        self,
        source: FrameSource,
        detector: Detector,
        desktop: Optional[VirtualDesktop] = None,
        config: Optional[LoopConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.source = source
        self.detector = detector
        self.desktop = desktop
        self.config = config or LoopConfig()
        self.stats = LoopStats()
        self._log = logger or logging.getLogger(__name__)
        self._running = False
        self._callbacks: List[LoopCallback] = []

    @property
    def running(self) -> bool:
        return self._running

    def add_callback(self, callback: LoopCallback) -> None:
        """
        Add a callback to be called after each frame is processed.

        Args:
            callback: Function taking (frame_data, results) as arguments.
        """
        self._callbacks.append(callback)

    def run(self) -> LoopStats:
        """
        Run until stopped, out of frames or out of retries.

        Configuration and provisioning errors raised by the detector propagate;
        the source is closed either way.
        """
        self._running = True
        self.stats = LoopStats()

        try:
            self.source.open()
            self._log.info(f"Detection loop started: source={self.source.source_id}")

            while self._running:
                if self.config.max_frames is not None and self.stats.frame_count >= self.config.max_frames:
                    break

                frame_data = self.source.read()
                if frame_data is None:
                    self.stats.consecutive_failures += 1
                    if self.stats.consecutive_failures >= self.config.max_consecutive_failures:
                        self._log.warning(
                            f"No frame for {self.stats.consecutive_failures} consecutive reads, stopping"
                        )
                        break
                    if self.config.retry_delay > 0:
                        time.sleep(self.config.retry_delay)
                    continue

                self.stats.consecutive_failures = 0
                results = self.process_frame(frame_data)

                for callback in self._callbacks:
                    try:
                        callback(frame_data, results)
                    except Exception as e:
                        self._log.warning(f"Callback error: {e}")

                self._log_stats()

        except KeyboardInterrupt:
            self._log.info("Detection loop interrupted by user")
        finally:
            self._running = False
            self.source.close()
            self._log.info(
                f"Detection loop stopped: frames={self.stats.frame_count}, hits={self.stats.hit_count}"
            )

        return self.stats

    def stop(self) -> None:
        """Signal the loop to stop after the current frame."""
        self._running = False

    def process_frame(self, frame_data: FrameData) -> List[DetectionResult]:
        """Detect on one frame and map hits to desktop coordinates."""
        self.stats.frame_count += 1
        raw: Union[DetectionResult, List[DetectionResult]] = self.detector.detect(frame_data.frame)
        results = [raw] if isinstance(raw, DetectionResult) else list(raw)

        if self.desktop is not None:
            results = [r.map_to_desktop(self.desktop, frame_data.origin) for r in results]

        if any(r.success for r in results):
            self.stats.hit_count += 1
        return results

    def _log_stats(self) -> None:
        now = time.time()
        if now - self.stats.last_stats_log_time >= self.config.stats_log_interval:
            elapsed = max(1e-6, now - self.stats.start_time)
            self._log.info(
                f"Loop stats: frames={self.stats.frame_count}, hits={self.stats.hit_count}, "
                f"fps={self.stats.frame_count / elapsed:.1f}"
            )
            self.stats.last_stats_log_time = now
