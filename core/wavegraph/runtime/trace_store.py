"""File-based storage for run traces.

Only diagnostics are stored here; run state is never persisted. Each run
gets its own directory, and events are kept as JSONL so a partially
written file (a crash mid-save) still loads up to the last full line.

Storage layout::

    {base_path}/
      runs/
        {run_id}/
          trace.jsonl    # one TraceEvent per line
          meta.json      # graph id and event count
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path

from wavegraph.runtime.trace_schemas import RunTrace, TraceEvent

logger = logging.getLogger(__name__)


class TraceStore:
    """Persists run traces. Safe for concurrent runs via per-run directories."""

    def __init__(self, base_path: Path | str) -> None:
        self._base_path = Path(base_path)

    def _get_run_dir(self, run_id: str) -> Path:
        return self._base_path / "runs" / run_id

    def ensure_run_dir(self, run_id: str) -> Path:
        run_dir = self._get_run_dir(run_id)
        run_dir.mkdir(parents=True, exist_ok=True)
        return run_dir

    def append_events(self, run_id: str, events: list[TraceEvent]) -> None:
        """Append events to trace.jsonl. Sync."""
        path = self.ensure_run_dir(run_id) / "trace.jsonl"
        with open(path, "a", encoding="utf-8") as f:
            for event in events:
                f.write(json.dumps(event.model_dump(mode="json"), ensure_ascii=False) + "\n")

    async def save_trace(self, run_id: str, events: list[TraceEvent], graph_id: str = "") -> Path:
        """Write a complete trace for ``run_id``, replacing any previous one."""

        def _write() -> Path:
            run_dir = self.ensure_run_dir(run_id)
            trace_path = run_dir / "trace.jsonl"
            trace_path.unlink(missing_ok=True)
            self.append_events(run_id, events)
            meta = {"run_id": run_id, "graph_id": graph_id, "event_count": len(events)}
            tmp = run_dir / "meta.tmp"
            tmp.write_text(json.dumps(meta, indent=2), encoding="utf-8")
            tmp.replace(run_dir / "meta.json")
            return trace_path

        path = await asyncio.to_thread(_write)
        logger.debug(f"Saved {len(events)} trace events for run {run_id} to {path}")
        return path

    async def load_trace(self, run_id: str) -> RunTrace | None:
        """Load a persisted trace. Returns None if the run is unknown."""
        run_dir = self._get_run_dir(run_id)

        def _read() -> RunTrace | None:
            trace_path = run_dir / "trace.jsonl"
            if not trace_path.exists():
                return None
            graph_id = ""
            meta_path = run_dir / "meta.json"
            if meta_path.exists():
                try:
                    graph_id = json.loads(meta_path.read_text(encoding="utf-8")).get("graph_id", "")
                except (json.JSONDecodeError, OSError) as e:
                    logger.warning("Failed to read %s: %s", meta_path, e)
            events = _read_jsonl_events(trace_path)
            return RunTrace(run_id=run_id, graph_id=graph_id, events=events)

        return await asyncio.to_thread(_read)

    async def list_runs(self) -> list[str]:
        """Return stored run ids, most recently modified first."""

        def _scan() -> list[str]:
            runs_dir = self._base_path / "runs"
            if not runs_dir.exists():
                return []
            dirs = [d for d in runs_dir.iterdir() if (d / "trace.jsonl").exists()]
            dirs.sort(key=lambda d: d.stat().st_mtime, reverse=True)
            return [d.name for d in dirs]

        return await asyncio.to_thread(_scan)


def _read_jsonl_events(path: Path) -> list[TraceEvent]:
    """Parse trace.jsonl, skipping blank and corrupt lines."""
    events: list[TraceEvent] = []
    try:
        with open(path, encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    events.append(TraceEvent.model_validate_json(line))
                except ValueError as e:
                    logger.warning("Skipping corrupt JSONL line in %s: %s", path, e)
    except OSError as e:
        logger.warning("Failed to read %s: %s", path, e)
    return events
