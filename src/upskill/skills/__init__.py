"""
Skill bundles -- API surface analysis, generation and catalog.
"""

from .catalog import SkillCatalog, SkillInfo, parse_frontmatter
from .scaffolder import (
    BUNDLE_FILES,
    METADATA_FILE,
    REFERENCE_FILE,
    SHORT_FILE,
    SkillScaffolder,
    short_line_count,
    skill_dir_name,
)
from .surface import (
    ApiSurface,
    ApiSurfaceAnalyzer,
    Operation,
    infer_capabilities,
    infer_triggers,
)

__all__ = [
    "ApiSurface",
    "ApiSurfaceAnalyzer",
    "BUNDLE_FILES",
    "METADATA_FILE",
    "Operation",
    "REFERENCE_FILE",
    "SHORT_FILE",
    "SkillCatalog",
    "SkillInfo",
    "SkillScaffolder",
    "infer_capabilities",
    "infer_triggers",
    "parse_frontmatter",
    "short_line_count",
    "skill_dir_name",
]
