"""
Human Log -- formatter and helper for workflow traceability logs.

Produces readable output so the user can follow each step:

    Searching npm and PyPI for "widgetkit"
      npm  widgetkit 2.1.0
      pypi (no match)
    Selected widgetkit 2.1.0 from npm (only match)
    Installing widgetkit 2.1.0 with npm...
      OK -> ~/.upskill/node_modules/widgetkit/
    Skill written -> ~/.upskill/skills/widgetkit (SKILL.md: 24 lines)

    ✓ widgetkit ready
"""

import logging
import sys

from .levels import HUMAN

_REASON_LABELS = {
    "single": "only match",
    "official": "official package",
    "downloads": "more weekly downloads",
    "types": "ships type information",
    "recency": "more recently published",
    "tie": "tie",
    "user": "chosen explicitly",
}


class HumanFormatter:
    """Converts structured workflow events into readable lines.

    Each event type has its own format; unknown events produce None.
    """

    def format_event(self, event: str, **kw) -> str | None:
        match event:

            # ── SEARCH ───────────────────────────────────────────────────
            case "workflow.search":
                return f'Searching npm and PyPI for "{kw.get("query", "?")}"'

            case "workflow.candidate":
                registry = kw.get("registry", "?")
                name = kw.get("name")
                if not name:
                    return f"  {registry:<4} (no match)"
                return f"  {registry:<4} {name} {kw.get('version', '?')}"

            # ── SELECTION ────────────────────────────────────────────────
            case "workflow.selected":
                reason = _REASON_LABELS.get(kw.get("reason", ""), kw.get("reason", "?"))
                line = (
                    f"Selected {kw.get('name', '?')} {kw.get('version', '?')} "
                    f"from {kw.get('registry', '?')} ({reason})"
                )
                if kw.get("alternative"):
                    line += f"\n  alternative: {kw['alternative']}"
                return line

            case "workflow.tie":
                return (
                    f"\n⚠  Both registries match equally: "
                    f"{kw.get('npm', '?')} (npm) / {kw.get('pypi', '?')} (pypi)"
                )

            # ── INSTALL ──────────────────────────────────────────────────
            case "install.start":
                return (
                    f"Installing {kw.get('name', '?')} {kw.get('version', '?')} "
                    f"with {kw.get('manager', '?')}..."
                )

            case "install.skipped":
                return f"  already installed -> {kw.get('path', '?')}"

            case "install.complete":
                return f"  OK -> {kw.get('path', '?')}"

            case "install.failed":
                return f"  ERROR: {kw.get('error', '?')}"

            # ── SKILLS ───────────────────────────────────────────────────
            case "skill.written":
                return (
                    f"Skill written -> {kw.get('path', '?')} "
                    f"(SKILL.md: {kw.get('lines', '?')} lines)"
                )

            case "workflow.notice":
                return f"  ⚠  {kw.get('message', '?')}"

            # ── LIFECYCLE ────────────────────────────────────────────────
            case "workflow.complete":
                name = kw.get("name", "?")
                if kw.get("ready", True):
                    return f"\n✓ {name} ready"
                return f"\n✓ {name} installed (set {kw.get('env_var', '?')} before use)"

            case "workflow.update_check":
                name = kw.get("name", "?")
                if kw.get("update_available"):
                    flag = " BREAKING" if kw.get("breaking") else ""
                    return f"  {name}: {kw.get('installed')} -> {kw.get('latest')}{flag}"
                return f"  {name}: {kw.get('installed')} (latest)"

            case "workflow.update_failed":
                return f"  {kw.get('name', '?')}: check failed ({kw.get('error', '?')})"

            case _:
                return None


class HumanLogHandler(logging.Handler):
    """Logging handler that only processes HUMAN records and formats them.

    Writes to stderr so stdout pipes (e.g. --json) stay clean.
    """

    def __init__(self, stream=None) -> None:
        super().__init__(level=HUMAN)
        self.stream = stream or sys.stderr
        self.formatter_inst = HumanFormatter()

    def emit(self, record: logging.LogRecord) -> None:
        try:
            if record.levelno != HUMAN:
                return

            # structlog passes the event dict as record.msg
            if isinstance(record.msg, dict):
                payload = dict(record.msg)
                event = payload.pop("event", "")
            else:
                event = getattr(record, "event", None) or record.getMessage()
                payload = {}

            formatted = self.formatter_inst.format_event(event, **payload)
            if formatted is not None:
                self.stream.write(formatted + "\n")
                self.stream.flush()
        except Exception:
            self.handleError(record)


class HumanLog:
    """Typed helper to emit HUMAN-level logs from the code.

    Usage:
        hlog = HumanLog(structlog.get_logger())
        hlog.search("widgetkit")
        hlog.selected("widgetkit", "2.1.0", "npm", "single")
    """

    def __init__(self, logger) -> None:
        self._log = logger

    def search(self, query: str) -> None:
        self._log.log(HUMAN, "workflow.search", query=query)

    def candidate(self, registry: str, name: str | None = None, version: str | None = None) -> None:
        self._log.log(HUMAN, "workflow.candidate", registry=registry, name=name, version=version)

    def selected(
        self,
        name: str,
        version: str,
        registry: str,
        reason: str,
        alternative: str | None = None,
    ) -> None:
        self._log.log(
            HUMAN, "workflow.selected",
            name=name, version=version, registry=registry,
            reason=reason, alternative=alternative,
        )

    def tie(self, npm: str, pypi: str) -> None:
        self._log.log(HUMAN, "workflow.tie", npm=npm, pypi=pypi)

    def install_start(self, name: str, version: str, manager: str) -> None:
        self._log.log(HUMAN, "install.start", name=name, version=version, manager=manager)

    def install_skipped(self, path: str) -> None:
        self._log.log(HUMAN, "install.skipped", path=path)

    def install_complete(self, path: str) -> None:
        self._log.log(HUMAN, "install.complete", path=path)

    def install_failed(self, error: str) -> None:
        self._log.log(HUMAN, "install.failed", error=error)

    def skill_written(self, path: str, lines: int) -> None:
        self._log.log(HUMAN, "skill.written", path=path, lines=lines)

    def notice(self, message: str) -> None:
        self._log.log(HUMAN, "workflow.notice", message=message)

    def complete(self, name: str, ready: bool, env_var: str | None = None) -> None:
        self._log.log(HUMAN, "workflow.complete", name=name, ready=ready, env_var=env_var)

    def update_check(
        self,
        name: str,
        installed: str,
        latest: str,
        update_available: bool,
        breaking: bool,
    ) -> None:
        self._log.log(
            HUMAN, "workflow.update_check",
            name=name, installed=installed, latest=latest,
            update_available=update_available, breaking=breaking,
        )

    def update_failed(self, name: str, error: str) -> None:
        self._log.log(HUMAN, "workflow.update_failed", name=name, error=error)
