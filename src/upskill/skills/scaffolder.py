"""
SkillScaffolder -- writes the skill bundle of an installed package.

Each bundle lives in <skills_root>/<package>/ and holds:
- SKILL.md       short instructions with YAML frontmatter (~20-30 lines)
- REFERENCE.md   full reference: every operation, auth details, examples
- metadata.json  InstalledPackage plus capabilities and triggers

The three files are written to a hidden staging directory first and then
swapped into place with os.replace, so a reader never sees a partial set.
"""

import json
import os
import re
import shutil
import tempfile
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

import structlog
import yaml

from ..install.models import InstalledPackage
from ..logging import HumanLog
from ..registry.models import PackageSummary
from .surface import ApiSurface, infer_capabilities, infer_triggers

logger = structlog.get_logger()

SHORT_FILE = "SKILL.md"
REFERENCE_FILE = "REFERENCE.md"
METADATA_FILE = "metadata.json"
BUNDLE_FILES = (SHORT_FILE, REFERENCE_FILE, METADATA_FILE)


def skill_dir_name(package: str) -> str:
    """Directory name for a package: '@scope/name' -> 'scope__name'."""
    return package.lstrip("@").replace("/", "__")


def short_line_count(text: str) -> int:
    return len(text.rstrip("\n").splitlines())


class SkillScaffolder:
    """Renders and atomically writes skill bundles."""

    def __init__(
        self,
        skills_root: Path,
        short_max_lines: int = 30,
        clock: Callable[[], datetime] | None = None,
    ):
        self.skills_root = skills_root
        self.short_max_lines = short_max_lines
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.log = logger.bind(component="skill_scaffolder")
        self.hlog = HumanLog(self.log)

    def generate(
        self,
        installed: InstalledPackage,
        surface: ApiSurface,
        summary: PackageSummary,
    ) -> Path:
        """Write SKILL.md, REFERENCE.md and metadata.json for a package.

        Regeneration replaces the previous bundle as a whole.

        Returns:
            Path to the skill directory.
        """
        short = self.render_short(installed, surface, summary)
        files = {
            SHORT_FILE: short,
            REFERENCE_FILE: self.render_reference(installed, surface, summary),
            METADATA_FILE: self.render_metadata(installed, surface, summary),
        }

        target = self.skills_root / skill_dir_name(installed.name)
        self._write_atomically(target, files)

        lines = short_line_count(short)
        if lines > self.short_max_lines:
            self.log.warning(
                "skill.short_over_budget",
                package=installed.name,
                lines=lines,
                budget=self.short_max_lines,
            )
        self.hlog.skill_written(str(target), lines)
        return target

    # ── Rendering ────────────────────────────────────────────────────────

    def render_short(
        self,
        installed: InstalledPackage,
        surface: ApiSurface,
        summary: PackageSummary,
    ) -> str:
        description = summary.description or f"{installed.name} ({installed.registry})"
        frontmatter = yaml.safe_dump(
            {"name": installed.name, "description": description},
            sort_keys=False,
            allow_unicode=True,
            width=1000,
        ).strip()

        head = [
            "---",
            frontmatter,
            "---",
            "",
            f"# {installed.name}",
            "",
            description,
            "",
            f"- Version: {installed.version} ({installed.registry})",
            f"- Installed at: `{installed.install_path}`",
            f"- Authentication: {_auth_line(installed)}",
            f"- Usage: {_usage_line(installed)}",
        ]
        if not surface.has_type_info:
            head.append("- Note: no type information shipped; signatures are inferred")
        head += ["", "## Primary operations", ""]

        tail = ["", f"Full reference: {REFERENCE_FILE}"]

        fixed = len("\n".join(head + tail).splitlines())
        room = max(self.short_max_lines - fixed, 3)
        ops = surface.primary_operations
        shown = ops[:room]
        body = [_op_line(op) for op in shown]
        if not body:
            body = [f"- No public operations discovered; see {REFERENCE_FILE}"]
        elif len(ops) > len(shown):
            body[-1] = f"- ... and {len(ops) - len(shown) + 1} more in {REFERENCE_FILE}"

        return "\n".join(head + body + tail) + "\n"

    def render_reference(
        self,
        installed: InstalledPackage,
        surface: ApiSurface,
        summary: PackageSummary,
    ) -> str:
        out = [f"# {installed.name} reference", ""]
        if summary.description:
            out += [summary.description, ""]

        out += [
            "## Package",
            "",
            "| Field | Value |",
            "|---|---|",
            f"| Registry | {installed.registry} |",
            f"| Version | {installed.version} |",
            f"| Install path | `{installed.install_path}` |",
            f"| Type information | {'yes' if surface.has_type_info else 'no'} |",
        ]
        if summary.homepage:
            out.append(f"| Homepage | {summary.homepage} |")
        if summary.repository:
            out.append(f"| Repository | {summary.repository} |")
        if summary.keywords:
            out.append(f"| Keywords | {', '.join(summary.keywords)} |")

        out += ["", "## Setup", "", _usage_line(installed), ""]

        out += ["## Authentication", ""]
        if installed.requires_auth:
            out += [
                f"This package needs a credential. Export it as "
                f"`{installed.credential_env_var}`; upskill never sets the value.",
                "",
            ]
            out += [f"> {hint}" for hint in surface.auth_hints]
            out.append("")
        else:
            out += ["None detected.", ""]

        out += ["## API", ""]
        if not surface.operations:
            out += ["No public operations were discovered.", ""]
        for kind, title in (
            ("function", "Functions"),
            ("class", "Classes"),
            ("method", "Methods"),
            ("constant", "Constants"),
        ):
            ops = [op for op in surface.operations if op.kind == kind]
            if not ops:
                continue
            out += [f"### {title}", ""]
            for op in ops:
                out += [f"#### `{op.name}`", "", "```", op.signature, "```", ""]
                if op.summary:
                    out += [op.summary, ""]

        if surface.examples:
            out += ["## Examples", ""]
            for example in surface.examples:
                out += [example, ""]

        return "\n".join(out).rstrip("\n") + "\n"

    def render_metadata(
        self,
        installed: InstalledPackage,
        surface: ApiSurface,
        summary: PackageSummary,
    ) -> str:
        data = installed.model_dump()
        data.update(
            {
                "description": summary.description,
                "has_type_info": surface.has_type_info,
                "operations": len(surface.operations),
                "capabilities": infer_capabilities(surface, summary),
                "triggers": infer_triggers(summary),
                "generated_at": self._clock().isoformat(),
            }
        )
        return json.dumps(data, indent=2, ensure_ascii=False) + "\n"

    # ── Filesystem ───────────────────────────────────────────────────────

    def _write_atomically(self, target: Path, files: dict[str, str]) -> None:
        self.skills_root.mkdir(parents=True, exist_ok=True)
        self._remove_stale(target.name)

        staging = Path(
            tempfile.mkdtemp(prefix=f".{target.name}.", suffix=".tmp", dir=self.skills_root)
        )
        backup: Path | None = None
        try:
            for name, content in files.items():
                (staging / name).write_text(content, encoding="utf-8")
            if target.exists():
                backup = self.skills_root / f".{target.name}.{uuid.uuid4().hex[:8]}.old"
                os.replace(target, backup)
            os.replace(staging, target)
        except BaseException:
            shutil.rmtree(staging, ignore_errors=True)
            if backup is not None and backup.exists() and not target.exists():
                os.replace(backup, target)
            raise

        if backup is not None:
            shutil.rmtree(backup, ignore_errors=True)
        self.log.debug("skill.swapped", path=str(target))

    def _remove_stale(self, dir_name: str) -> None:
        """Drop staging/backup leftovers of an interrupted run for this package."""
        pattern = re.compile(rf"^\.{re.escape(dir_name)}\.[A-Za-z0-9_]+\.(tmp|old)$")
        for leftover in self.skills_root.iterdir():
            if leftover.is_dir() and pattern.match(leftover.name):
                shutil.rmtree(leftover, ignore_errors=True)
                self.log.info("skill.stale_removed", path=str(leftover))


def _auth_line(installed: InstalledPackage) -> str:
    if installed.requires_auth:
        return f"required, export `{installed.credential_env_var}`"
    return "none"


def _usage_line(installed: InstalledPackage) -> str:
    path = installed.install_path.rstrip("/")
    if installed.registry == "npm":
        node_modules = path[: -len(installed.name)].rstrip("/")
        return f"`NODE_PATH={node_modules}` then `require(\"{installed.name}\")`"
    lib, module = path.rsplit("/", 1)
    return f"`PYTHONPATH={lib}` then `import {module}`"


def _op_line(op) -> str:
    line = f"- `{op.signature}`"
    if op.summary:
        line += f": {op.summary}"
    return line
