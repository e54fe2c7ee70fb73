"""
Performance tracing and metric insights.

Only one trace may record at a time in the whole process. Starting a second
one raises TraceAlreadyRunningError and leaves the running trace untouched.
"""

import asyncio
import time
from dataclasses import dataclass

from ..utils.logging_config import get_logger
from .errors import TraceAlreadyRunningError, ViewNotFoundError
from .navigation import NavigationController
from .registry import ViewRegistry
from .surface import BrowserSurface

logger = get_logger(__name__)

TRACE_CATEGORIES = (
    "-*",
    "blink.console",
    "blink.user_timing",
    "devtools.timeline",
    "disabled-by-default-devtools.screenshot",
    "disabled-by-default-devtools.timeline",
    "disabled-by-default-devtools.timeline.invalidationTracking",
    "disabled-by-default-devtools.timeline.frame",
    "disabled-by-default-devtools.timeline.stack",
    "disabled-by-default-v8.cpu_profiler",
    "disabled-by-default-v8.cpu_profiler.hires",
    "latencyInfo",
    "loading",
    "disabled-by-default-lighthouse",
    "v8.execute",
    "v8",
)

INSIGHT_NAMES = ("DocumentLatency", "LCPBreakdown", "RenderBlocking")
DEFAULT_INSIGHT_SET = "main"

# Seconds of task time above which the latency insight suggests splitting work
LONG_TASK_THRESHOLD_S = 0.05

RELOAD_SETTLE_S = 0.5


def format_bytes(size: float) -> str:
    if size < 1024:
        return f"{size:g} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    if size < 1024 * 1024 * 1024:
        return f"{size / (1024 * 1024):.1f} MB"
    return f"{size / (1024 * 1024 * 1024):.1f} GB"


def _ms(seconds: float) -> str:
    return f"{seconds * 1000:.2f}ms"


def _count(value: float) -> str:
    return f"{value:g}"


@dataclass(frozen=True)
class TraceSummary:
    duration_ms: int
    metrics: dict[str, float]

    def format(self) -> str:
        m = self.metrics
        lines = [
            "The performance trace has been stopped.",
            "",
            "## Trace Summary",
            f"Duration: {self.duration_ms}ms",
            "",
            "## Core Metrics",
        ]

        if m.get("JSHeapUsedSize"):
            lines.append(f"JS Heap Used: {format_bytes(m['JSHeapUsedSize'])}")
        if m.get("JSHeapTotalSize"):
            lines.append(f"JS Heap Total: {format_bytes(m['JSHeapTotalSize'])}")
        if m.get("Nodes"):
            lines.append(f"DOM Nodes: {_count(m['Nodes'])}")
        if m.get("Documents"):
            lines.append(f"Documents: {_count(m['Documents'])}")
        if m.get("LayoutCount"):
            lines.append(f"Layout Count: {_count(m['LayoutCount'])}")
        if m.get("LayoutDuration"):
            lines.append(f"Layout Duration: {_ms(m['LayoutDuration'])}")
        if m.get("RecalcStyleCount"):
            lines.append(f"Recalc Style Count: {_count(m['RecalcStyleCount'])}")
        if m.get("ScriptDuration"):
            lines.append(f"Script Duration: {_ms(m['ScriptDuration'])}")
        if m.get("TaskDuration"):
            lines.append(f"Task Duration: {_ms(m['TaskDuration'])}")

        lines.extend(
            [
                "",
                "## Available Insight Sets",
                "Use browser_perf_insight with these insight sets:",
                f'- insightSetId: "{DEFAULT_INSIGHT_SET}", available insights: {", ".join(INSIGHT_NAMES)}',
            ]
        )
        return "\n".join(lines)


def format_insight(insight_set_id: str, insight_name: str, metrics: dict[str, float]) -> str:
    """Render a named insight; unknown names get the general metrics dump"""

    def get(name: str) -> float:
        return metrics.get(name, 0)

    lines = [f"# Performance Insight: {insight_name}", f"Insight Set: {insight_set_id}", ""]

    key = insight_name.lower()
    if key == "documentlatency":
        lines.append("## Document Latency Analysis")
        lines.append(f"Task Duration: {_ms(get('TaskDuration'))}")
        lines.append(f"Script Duration: {_ms(get('ScriptDuration'))}")
        if get("TaskDuration") > LONG_TASK_THRESHOLD_S:
            lines.extend(
                [
                    "",
                    "Long tasks detected. Consider:",
                    "- Breaking up long-running JavaScript",
                    "- Using requestIdleCallback for non-urgent work",
                    "- Web Workers for heavy computation",
                ]
            )
    elif key == "lcpbreakdown":
        lines.append("## LCP (Largest Contentful Paint) Breakdown")
        lines.append(f"Layout Count: {_count(get('LayoutCount'))}")
        lines.append(f"Layout Duration: {_ms(get('LayoutDuration'))}")
        lines.append(f"Recalc Style Count: {_count(get('RecalcStyleCount'))}")
        lines.extend(
            [
                "",
                "Recommendations:",
                "- Optimize critical rendering path",
                "- Preload LCP resources",
                "- Reduce render-blocking resources",
            ]
        )
    elif key == "renderblocking":
        lines.append("## Render Blocking Resources")
        lines.append(f"Documents: {_count(get('Documents'))}")
        lines.append(f"Frames: {_count(get('Frames'))}")
        lines.extend(
            [
                "",
                "Recommendations:",
                "- Use async/defer for scripts",
                "- Inline critical CSS",
                "- Preconnect to required origins",
            ]
        )
    else:
        lines.append("## General Performance Metrics")
        lines.append(f"JS Heap Used: {format_bytes(get('JSHeapUsedSize'))}")
        lines.append(f"JS Heap Total: {format_bytes(get('JSHeapTotalSize'))}")
        lines.append(f"DOM Nodes: {_count(get('Nodes'))}")
        lines.append(f"Layout Count: {_count(get('LayoutCount'))}")
        lines.append(f"Script Duration: {_ms(get('ScriptDuration'))}")

    return "\n".join(lines)


@dataclass
class _Trace:
    view_id: str
    started_at: float | None = None


class PerformanceController:
    """Process-wide trace state plus per-view metrics"""

    def __init__(
        self,
        registry: ViewRegistry,
        navigation: NavigationController,
        auto_stop_ms: int = 5000,
    ) -> None:
        self.registry = registry
        self.navigation = navigation
        self.auto_stop_ms = auto_stop_ms
        self._trace: _Trace | None = None
        self._metrics_enabled: set[str] = set()

    @property
    def is_tracing(self) -> bool:
        return self._trace is not None

    @property
    def tracing_view_id(self) -> str | None:
        return self._trace.view_id if self._trace else None

    def _surface(self, view_id: str) -> BrowserSurface:
        surface = self.registry.get_surface(view_id)
        if surface is None:
            raise ViewNotFoundError(view_id)
        return surface

    async def start(self, view_id: str, reload: bool = False, auto_stop: bool = False) -> TraceSummary | None:
        """
        Start recording a trace in view_id.

        Returns:
            The summary if auto_stop stopped the trace, otherwise None

        Raises:
            TraceAlreadyRunningError: If a trace is already recording
        """
        if self._trace is not None:
            raise TraceAlreadyRunningError()

        surface = self._surface(view_id)
        trace = _Trace(view_id)
        self._trace = trace

        try:
            if reload:
                original_url = surface.url
                await self.navigation.navigate(view_id, "url", "about:blank")
                await asyncio.sleep(RELOAD_SETTLE_S)
                await self._begin(surface, trace)
                await self.navigation.navigate(view_id, "url", original_url)
            else:
                await self._begin(surface, trace)
        except BaseException:
            if self._trace is trace:
                if trace.started_at is not None:
                    await self._end_quietly(surface)
                self._trace = None
            raise

        if not auto_stop:
            return None

        await asyncio.sleep(self.auto_stop_ms / 1000)
        if self._trace is not trace:
            return None
        return await self.stop()

    async def stop(self) -> TraceSummary | None:
        """Stop the running trace; None if nothing was recording"""
        trace = self._trace
        if trace is None or trace.started_at is None:
            return None

        surface = self._surface(trace.view_id)
        try:
            await surface.send_command("Tracing.end")
        finally:
            self._trace = None

        duration_ms = round((time.monotonic() - trace.started_at) * 1000)
        logger.info(f"Trace stopped in {trace.view_id} after {duration_ms}ms")
        return TraceSummary(duration_ms, await self.get_metrics(trace.view_id))

    async def get_metrics(self, view_id: str) -> dict[str, float]:
        surface = self._surface(view_id)
        if view_id not in self._metrics_enabled:
            await surface.send_command("Performance.enable")
            self._metrics_enabled.add(view_id)
        result = await surface.send_command("Performance.getMetrics")
        return {metric["name"]: metric["value"] for metric in result.get("metrics") or []}

    async def insight(self, view_id: str, insight_set_id: str, insight_name: str) -> str:
        return format_insight(insight_set_id, insight_name, await self.get_metrics(view_id))

    def forget(self, view_id: str) -> None:
        self._metrics_enabled.discard(view_id)
        if self._trace is not None and self._trace.view_id == view_id:
            logger.warning(f"View {view_id} destroyed while tracing; trace discarded")
            self._trace = None

    async def _begin(self, surface: BrowserSurface, trace: _Trace) -> None:
        await surface.send_command("Tracing.start", {"categories": ",".join(TRACE_CATEGORIES)})
        trace.started_at = time.monotonic()
        logger.info(f"Trace started in {trace.view_id}")

    async def _end_quietly(self, surface: BrowserSurface) -> None:
        try:
            await surface.send_command("Tracing.end")
        except Exception as e:
            logger.warning(f"Failed to end trace after start error: {e}")
