"""Practice-session debug logger: writes human-readable Markdown files for floor tracing.

Creates a per-session folder under data/sessions/{session_id}/ with timestamped
logs of every floor decision, timeline boundary and lifecycle event.

Fire-and-forget: write errors are caught so logging never disrupts the live session.
"""

import asyncio
import logging
import os
import time
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger(__name__)


def _fmt_elapsed(seconds: float) -> str:
    """Format elapsed seconds as MM:SS."""
    m, s = divmod(int(seconds), 60)
    return f"{m:02d}:{s:02d}"


def _fmt_time(ts: str, elapsed: float) -> str:
    """Format a compact timestamp line: [MM:SS | HH:MM:SS UTC]."""
    try:
        dt = datetime.fromisoformat(ts)
        clock = dt.strftime("%H:%M:%S")
    except ValueError:
        clock = ts
    return f"[{_fmt_elapsed(elapsed)} | {clock} UTC]"


def _fmt_seconds(value) -> str:
    return "open" if value is None else f"{value:.1f}s"


class SessionLogger:
    """Writes Markdown debug logs to data/sessions/{session_id}/."""

    def __init__(self, session_id: str, base_dir: str = "./data"):
        self.session_id = session_id
        self.session_dir = os.path.join(base_dir, "sessions", session_id)
        self._start_time = time.time()
        os.makedirs(self.session_dir, exist_ok=True)

    def _elapsed(self) -> float:
        return round(time.time() - self._start_time, 2)

    def _timestamp(self) -> str:
        return datetime.now(timezone.utc).isoformat()

    def _time_header(self) -> str:
        return _fmt_time(self._timestamp(), self._elapsed())

    def _safe_serialize(self, obj: Any) -> Any:
        """Make objects JSON-serializable."""
        if isinstance(obj, dict):
            return {k: self._safe_serialize(v) for k, v in obj.items()}
        if isinstance(obj, (list, tuple)):
            return [self._safe_serialize(v) for v in obj]
        if isinstance(obj, (str, int, float, bool)) or obj is None:
            return obj
        if hasattr(obj, "value"):  # Enum
            return obj.value
        if hasattr(obj, "__dict__"):
            return self._safe_serialize(obj.__dict__)
        return str(obj)

    def _append_sync(self, rel_path: str, text: str) -> None:
        full_path = os.path.join(self.session_dir, rel_path)
        os.makedirs(os.path.dirname(full_path), exist_ok=True)
        with open(full_path, "a", encoding="utf-8") as f:
            f.write(text)

    def _write_file_sync(self, rel_path: str, content: str) -> None:
        full_path = os.path.join(self.session_dir, rel_path)
        os.makedirs(os.path.dirname(full_path), exist_ok=True)
        with open(full_path, "w", encoding="utf-8") as f:
            f.write(content)

    async def _append(self, rel_path: str, text: str) -> None:
        """Append text to a file. Fire-and-forget."""
        try:
            await asyncio.to_thread(self._append_sync, rel_path, text)
        except OSError as e:
            logger.debug(f"SessionLogger write error: {e}")

    async def _write(self, rel_path: str, content: str) -> None:
        """Write (overwrite) a file. Fire-and-forget."""
        try:
            await asyncio.to_thread(self._write_file_sync, rel_path, content)
        except OSError as e:
            logger.debug(f"SessionLogger write error: {e}")

    # --- Convenience methods ---

    async def log_session_config(self, participants: list[dict]) -> None:
        """Write session-config.md with the panel taking part."""
        panel = "\n".join(
            f"- **{p.get('name', p.get('id'))}** (`{p.get('id')}`)"
            for p in participants
        ) or "- (no agents)"
        content = f"""# Practice Session

**Session ID:** `{self.session_id}`
**Started:** {self._timestamp()}

## Panel

{panel}
"""
        await self._write("session-config.md", content)

    async def log_timeline_event(
        self, event_type: str, data: dict, source: str
    ) -> None:
        """Append to timeline.md, every bus event in chronological order."""
        entry = f"{self._time_header()} **{event_type}** from `{source}`"
        serialized = self._safe_serialize(data)
        compact = {k: v for k, v in serialized.items() if v is not None}
        if compact:
            pairs = ", ".join(f"{k}={v}" for k, v in compact.items())
            if len(pairs) < 200:
                entry += f" | {pairs}"
        entry += "\n"
        await self._append("timeline.md", entry)

    async def log_floor_decision(
        self,
        participant_id: str,
        mode: str,
        decision: str,
        turn_counts: dict[str, int],
    ) -> None:
        counts = ", ".join(f"{k}={v}" for k, v in sorted(turn_counts.items()))
        entry = (
            f"{self._time_header()} `{participant_id}` {mode} → "
            f"**{decision}** (turns: {counts or 'none'})\n"
        )
        await self._append("floor.md", entry)

    async def write_segments(self, segments: list[dict]) -> None:
        """Write segments.md, the finalized speaking timeline as a table."""
        rows = "\n".join(
            f"| {i} | {_fmt_seconds(s.get('start'))} | {_fmt_seconds(s.get('end'))} "
            f"| `{s.get('owner_id')}` |"
            for i, s in enumerate(segments)
        )
        content = (
            f"# Speaking Timeline\n\n**Session ID:** `{self.session_id}`\n\n"
            "| # | Start | End | Owner |\n|---|---|---|---|\n"
            f"{rows}\n"
        )
        await self._write("segments.md", content)
