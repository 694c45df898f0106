"""
Configuration management and loading.

Resolves data directories from the environment and loads the optional
model alias rules used for display labels.
"""

import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

import yaml
from loguru import logger


OPENCODE_DATA_DIR_ENV = "OPENCODE_DATA_DIR"
CLAUDE_CONFIG_DIR_ENV = "CLAUDE_CONFIG_DIR"
CODEX_HOME_ENV = "CODEX_HOME"
PRICING_FILE_ENV = "AI_USAGE_METER_PRICING_FILE"

DEFAULT_OPENCODE_PATH = Path(".local") / "share" / "opencode"
DEFAULT_CLAUDE_PATHS = (Path(".config") / "claude", Path(".claude"))
DEFAULT_CODEX_PATH = Path(".codex")
DEFAULT_ALIAS_CONFIG_PATH = Path(".config") / "causage" / "aliases.yaml"

NAMED_COLORS = {
    "black", "blue", "cyan", "gray", "green", "grey",
    "magenta", "red", "white", "yellow",
}


@dataclass(frozen=True)
class DataPaths:
    """Locations of every usage source on this machine."""
    opencode_dir: Optional[Path]
    claude_dirs: Tuple[Path, ...]
    codex_dir: Optional[Path]
    pricing_file: Optional[Path] = None


@dataclass(frozen=True)
class AliasRule:
    """Display rewrite: first rule whose `match` occurs in a label wins."""
    match: str
    replace: str
    color: Optional[str] = None  # Rich style string

    def apply(self, label: str) -> str:
        return label.replace(self.match, self.replace, 1)


def _home_dir() -> Path:
    return Path(os.environ.get("HOME") or os.environ.get("USERPROFILE") or os.getcwd())


def _env_path(name: str) -> Optional[Path]:
    value = os.environ.get(name, "").strip()
    if not value:
        return None
    return Path(value).expanduser().resolve()


def resolve_data_paths(pricing_file: Optional[str] = None) -> DataPaths:
    """Resolve source directories from environment variables and defaults.

    Directories that do not exist are left out; a missing source is not an
    error and simply contributes no records.

    Args:
        pricing_file: Explicit pricing catalog path, overriding the environment

    Returns:
        DataPaths for the current user
    """
    home = _home_dir()

    opencode_dir = _env_path(OPENCODE_DATA_DIR_ENV)
    if opencode_dir is None or not opencode_dir.is_dir():
        opencode_dir = home / DEFAULT_OPENCODE_PATH
    if not opencode_dir.is_dir():
        opencode_dir = None

    claude_env = os.environ.get(CLAUDE_CONFIG_DIR_ENV, "").strip()
    if claude_env:
        candidates = [
            Path(part.strip()).expanduser().resolve()
            for part in claude_env.split(",")
            if part.strip()
        ]
    else:
        candidates = [home / path for path in DEFAULT_CLAUDE_PATHS]
    claude_dirs = tuple(path for path in candidates if (path / "projects").is_dir())

    codex_dir = _env_path(CODEX_HOME_ENV) or home / DEFAULT_CODEX_PATH
    if not codex_dir.is_dir():
        codex_dir = None

    pricing_path = Path(pricing_file).expanduser() if pricing_file else _env_path(PRICING_FILE_ENV)

    return DataPaths(
        opencode_dir=opencode_dir,
        claude_dirs=claude_dirs,
        codex_dir=codex_dir,
        pricing_file=pricing_path,
    )


def resolve_color(color_spec: Optional[str]) -> Optional[str]:
    """Translate a rule color into a Rich style string.

    Accepts the basic color names, `#rgb` / `#rrggbb` hex values and
    `ansi256:N`. Anything else yields no color.
    """
    if not color_spec:
        return None

    normalized = color_spec.strip().lower()
    if normalized in NAMED_COLORS:
        return "grey50" if normalized in ("gray", "grey") else normalized

    hex_match = re.fullmatch(r"#([0-9a-f]{3}|[0-9a-f]{6})", normalized)
    if hex_match:
        digits = hex_match.group(1)
        if len(digits) == 3:
            digits = "".join(ch * 2 for ch in digits)
        return f"#{digits}"

    ansi_match = re.fullmatch(r"ansi256:(\d{1,3})", normalized)
    if ansi_match and 0 <= int(ansi_match.group(1)) <= 255:
        return f"color({int(ansi_match.group(1))})"

    return None


def load_alias_rules(path: Path) -> List[AliasRule]:
    """Load display alias rules from a YAML file.

    Expected layout::

        rules:
          - match: claude-sonnet-4-5
            replace: sonnet
            color: "#ffc857"

    A missing file yields no rules. Unreadable YAML or a malformed `rules`
    section is logged and also yields no rules. Entries without both
    `match` and `replace` are skipped.

    Args:
        path: Path to the alias YAML file

    Returns:
        Compiled rules in file order
    """
    if not path.exists():
        return []

    try:
        with open(path, "r", encoding="utf-8") as f:
            raw_config = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        logger.warning("Ignoring unreadable alias config", path=str(path), error=str(e))
        return []

    if not raw_config:
        return []

    if not isinstance(raw_config, dict) or not isinstance(raw_config.get("rules", []), list):
        logger.warning("Alias config must contain a 'rules' list", path=str(path))
        return []

    rules = []
    for raw_rule in raw_config.get("rules") or []:
        if not isinstance(raw_rule, dict):
            continue
        match = str(raw_rule.get("match") or "").strip()
        replace = str(raw_rule.get("replace") or "").strip()
        if not match or not replace:
            continue
        color = raw_rule.get("color")
        rules.append(AliasRule(
            match=match,
            replace=replace,
            color=resolve_color(color if isinstance(color, str) else None),
        ))
    return rules


# Process-lifetime alias state: rules are loaded at most once.
_alias_rules: Optional[List[AliasRule]] = None
_alias_enabled = False


def get_alias_rules(path: Optional[Path] = None) -> List[AliasRule]:
    """Get the cached alias rules, loading them on first use.

    Args:
        path: Config path, defaults to ~/.config/causage/aliases.yaml

    Returns:
        The rule list shared by every caller for the rest of the process
    """
    global _alias_rules
    if _alias_rules is None:
        _alias_rules = load_alias_rules(path or _home_dir() / DEFAULT_ALIAS_CONFIG_PATH)
    return _alias_rules


def set_model_alias_enabled(enabled: bool) -> None:
    global _alias_enabled
    _alias_enabled = enabled


def reset_alias_cache() -> None:
    """Forget loaded rules and disable aliasing."""
    global _alias_rules, _alias_enabled
    _alias_rules = None
    _alias_enabled = False


def resolve_model_alias(label: str) -> Tuple[str, Optional[str]]:
    """Apply the first matching alias rule to a display label.

    Returns:
        Tuple of (label, Rich style or None). The label is unchanged when
        aliasing is disabled or no rule matches.
    """
    if not _alias_enabled:
        return label, None

    for rule in get_alias_rules():
        if rule.match in label:
            return rule.apply(label), rule.color

    return label, None
