"""
Skill catalog -- discovers, reads and removes generated skill bundles.

Only complete bundles are listed: a directory counts when it is not hidden
(staging and backup directories are) and holds all three bundle files.
"""

import json
import re
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog
import yaml

from .scaffolder import BUNDLE_FILES, METADATA_FILE, SHORT_FILE, skill_dir_name

logger = structlog.get_logger()


@dataclass
class SkillInfo:
    """Metadata of a generated skill."""

    name: str
    version: str
    registry: str
    path: Path
    description: str = ""
    requires_auth: bool = False
    credential_env_var: str | None = None
    capabilities: list[str] = field(default_factory=list)
    triggers: list[str] = field(default_factory=list)


class SkillCatalog:
    """Reads the skills root."""

    def __init__(self, skills_root: Path):
        self.skills_root = skills_root

    def list(self) -> list[SkillInfo]:
        skills: list[SkillInfo] = []
        if not self.skills_root.exists():
            return skills
        for skill_dir in sorted(self.skills_root.iterdir()):
            if not skill_dir.is_dir() or skill_dir.name.startswith("."):
                continue
            if not all((skill_dir / f).exists() for f in BUNDLE_FILES):
                continue
            info = self._load(skill_dir)
            if info:
                skills.append(info)
        logger.debug("skills.listed", count=len(skills))
        return skills

    def get(self, package: str) -> SkillInfo | None:
        skill_dir = self.skills_root / skill_dir_name(package)
        if not all((skill_dir / f).exists() for f in BUNDLE_FILES):
            return None
        return self._load(skill_dir)

    def metadata(self, package: str) -> dict[str, Any] | None:
        path = self.skills_root / skill_dir_name(package) / METADATA_FILE
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            return None

    def read_short(self, package: str) -> str | None:
        """SKILL.md body without its frontmatter."""
        path = self.skills_root / skill_dir_name(package) / SHORT_FILE
        try:
            content = path.read_text(encoding="utf-8")
        except OSError:
            return None
        _, body = parse_frontmatter(content)
        return body

    def remove(self, package: str) -> bool:
        path = self.skills_root / skill_dir_name(package)
        if not path.exists():
            return False
        shutil.rmtree(path)
        logger.info("skill.removed", package=package)
        return True

    def _load(self, skill_dir: Path) -> SkillInfo | None:
        try:
            data = json.loads((skill_dir / METADATA_FILE).read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("skill.metadata_unreadable", path=str(skill_dir), error=str(e))
            return None

        return SkillInfo(
            name=data.get("name", skill_dir.name),
            version=data.get("version", ""),
            registry=data.get("registry", ""),
            path=skill_dir,
            description=data.get("description", ""),
            requires_auth=bool(data.get("requires_auth")),
            credential_env_var=data.get("credential_env_var"),
            capabilities=list(data.get("capabilities") or []),
            triggers=list(data.get("triggers") or []),
        )


def parse_frontmatter(content: str) -> tuple[dict[str, Any], str]:
    """Split a markdown file into its YAML frontmatter and body."""
    match = re.match(r"^---\s*\n(.*?)\n---\s*\n(.*)$", content, re.DOTALL)
    if not match:
        return {}, content
    try:
        meta = yaml.safe_load(match.group(1)) or {}
    except yaml.YAMLError:
        meta = {}
    return meta, match.group(2)
