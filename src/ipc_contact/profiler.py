# MIT License (see LICENSE)
"""
Timing of the contact phases.

A ContactForm given a Profiler records one sample per call of its expensive
operations (constraint set rebuilds, barrier derivatives, line-search
candidate caching and CCD). Samples are kept per section name and reduced
to count, total, mean and max on request.

Example:
    profiler = Profiler()
    form = ContactForm(mesh, config, grad_E, avg_mass, profiler=profiler)
    ...
    profiler.log_summary()
"""
from __future__ import annotations
import logging
import time
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterator

logger = logging.getLogger(__name__)


@dataclass
class ProfileStats:
    """Raw timing samples in seconds, keyed by section name."""
    samples: defaultdict[str, list[float]] = field(default_factory=lambda: defaultdict(list))

    def add(self, name: str, seconds: float) -> None:
        self.samples[name].append(seconds)

    def reset(self) -> None:
        self.samples.clear()

    def summary(self) -> dict[str, dict[str, float]]:
        """
        Per-section statistics.

        Returns:
            {name: {"n", "total_ms", "mean_ms", "max_ms"}} for every section
            with at least one sample.
        """
        result = {}
        for name, seconds in self.samples.items():
            if not seconds:
                continue
            total = sum(seconds)
            result[name] = {
                "n": len(seconds),
                "total_ms": 1e3 * total,
                "mean_ms": 1e3 * total / len(seconds),
                "max_ms": 1e3 * max(seconds),
            }
        return result


class Profiler:
    """
    Named timing sections.

    Usage:
        with profiler.section("max_step_size"):
            alpha = form.max_step_size(x0, x1)
        profiler.stats.summary()["max_step_size"]["mean_ms"]
    """

    def __init__(self) -> None:
        self.stats = ProfileStats()

    @contextmanager
    def section(self, name: str) -> Iterator[None]:
        """Time the enclosed block; the sample is recorded even if it raises."""
        start = time.perf_counter()
        try:
            yield
        finally:
            self.stats.add(name, time.perf_counter() - start)

    def log_summary(self, level: int = logging.INFO) -> None:
        """One log line per section, slowest total first."""
        rows = sorted(self.stats.summary().items(), key=lambda kv: -kv[1]["total_ms"])
        for name, s in rows:
            logger.log(
                level, "%-18s n=%-6d total=%.3fms mean=%.3fms max=%.3fms",
                name, s["n"], s["total_ms"], s["mean_ms"], s["max_ms"],
            )
