"""
Process Memory Health Signal

Samples the process's resident set size at call time and compares it to
a configured budget. The object store consults this before large reads
and writes; a sample can be stale by the time a payload is transferred,
which is accepted.

Sampling order:
1. /proc/self/statm (Linux, current RSS)
2. resource.getrusage (peak RSS, other POSIX systems)
"""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass
from typing import Callable, Optional

from blobcoord.core.config import MemoryConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class MemorySample:
    """
    Point-in-time memory reading.

    heap_utilization is optional; samplers that can report allocator
    usage against its reserved size set it.
    """
    rss_bytes: int
    heap_utilization: Optional[float] = None


@dataclass(frozen=True, slots=True)
class MemoryStatus:
    """Classified memory reading."""
    rss_bytes: int
    utilization: float
    warning: bool
    critical: bool


def sample_process_memory() -> MemorySample:
    """Read the current process RSS."""
    try:
        with open("/proc/self/statm", "rb") as f:
            resident_pages = int(f.read().split()[1])
        return MemorySample(rss_bytes=resident_pages * os.sysconf("SC_PAGE_SIZE"))
    except (OSError, ValueError, IndexError):
        pass

    import resource

    peak = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    # ru_maxrss is bytes on macOS, kilobytes elsewhere
    if sys.platform != "darwin":
        peak *= 1024
    return MemorySample(rss_bytes=peak)


class MemoryHealthMonitor:
    """
    Process-wide memory headroom signal.

    Usage:
        monitor = MemoryHealthMonitor(MemoryConfig(total_budget_bytes=512 * MB))
        if monitor.under_pressure():
            ...
    """

    __slots__ = ("_config", "_sampler")

    def __init__(
        self,
        config: Optional[MemoryConfig] = None,
        sampler: Callable[[], MemorySample] = sample_process_memory,
    ) -> None:
        self._config = config or MemoryConfig()
        self._sampler = sampler

    @property
    def config(self) -> MemoryConfig:
        return self._config

    def status(self) -> MemoryStatus:
        sample = self._sampler()
        utilization = sample.rss_bytes / self._config.total_budget_bytes
        critical = sample.rss_bytes >= self._config.critical_bytes
        if (
            sample.heap_utilization is not None
            and sample.heap_utilization >= self._config.heap_utilization_threshold
        ):
            critical = True
        warning = critical or sample.rss_bytes >= self._config.warning_bytes
        if critical:
            logger.debug(
                f"Memory critical: rss={sample.rss_bytes // (1024 * 1024)}MB "
                f"({utilization:.0%} of budget)"
            )
        return MemoryStatus(
            rss_bytes=sample.rss_bytes,
            utilization=utilization,
            warning=warning,
            critical=critical,
        )

    def under_pressure(self) -> bool:
        return self.status().critical

    def has_headroom(self) -> bool:
        return not self.under_pressure()


class StaticMemoryMonitor(MemoryHealthMonitor):
    """Monitor with a fixed answer, for tests and demos."""

    __slots__ = ("_pressure",)

    def __init__(self, pressure: bool = False) -> None:
        super().__init__(MemoryConfig())
        self._pressure = pressure

    def set_pressure(self, pressure: bool) -> None:
        self._pressure = pressure

    def status(self) -> MemoryStatus:
        budget = self._config.total_budget_bytes
        rss = self._config.critical_bytes if self._pressure else 0
        return MemoryStatus(
            rss_bytes=rss,
            utilization=rss / budget,
            warning=self._pressure,
            critical=self._pressure,
        )
