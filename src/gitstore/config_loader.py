"""
Configuration discovery and loading for gitstore.

A configuration file is a YAML mapping with up to three sections:
``store``, ``sync`` and ``logging`` (see ``config_schema``).  Files are
looked up in this order, highest precedence first:

    1. the file named by ``GITSTORE_CONFIG``
    2. ``.gitstore/config.yml`` in the working directory (project)
    3. ``~/.config/gitstore/config.yml`` (user)

Sections merge key by key, so a project file can override only
``store.instance`` and inherit everything else from the user file.
String values may reference environment variables as ``${VAR}`` or
``${VAR:-default}``, and any value may be pulled from another file with
``!include``.  A relative ``store.path`` is taken relative to the file
that sets it.

Usage:
    from gitstore.config_loader import load_config

    config = load_config()  # UnifiedConfig, defaults when no file exists
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml

from gitstore.config_schema import UnifiedConfig, build_config

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "GITSTORE_CONFIG"

_VAR_REF = re.compile(r"\$\{(?P<name>[^}:]+?)(?::-(?P<default>.*?))?\}")


# ---------------------------------------------------------------------------
# Environment references
# ---------------------------------------------------------------------------


def expand_vars(text: str) -> str:
    """Substitute ``${VAR}`` and ``${VAR:-default}`` references in *text*.

    An unset or empty variable falls back to its default, or to ``""``
    when it has none.  An unterminated ``${`` is left as is.
    """
    return _VAR_REF.sub(
        lambda m: os.environ.get(m["name"]) or m["default"] or "", text
    )


def _expand(value: Any) -> Any:
    if isinstance(value, str):
        return expand_vars(value)
    if isinstance(value, list):
        return [_expand(item) for item in value]
    if isinstance(value, dict):
        return {key: _expand(item) for key, item in value.items()}
    return value


# ---------------------------------------------------------------------------
# YAML with !include
# ---------------------------------------------------------------------------


class _IncludeLoader(yaml.SafeLoader):
    """SafeLoader that understands ``!include <file>``.

    ``chain`` holds the files currently being loaded, outermost first;
    relative includes resolve against the last one.
    """

    def __init__(self, stream: Any, chain: tuple[Path, ...]) -> None:
        super().__init__(stream)
        self.chain = chain

    def include(self, node: yaml.ScalarNode) -> Any:
        target = Path(self.construct_scalar(node)).expanduser()
        if not target.is_absolute():
            target = self.chain[-1].parent / target
        target = target.resolve()
        if target in self.chain:
            cycle = " -> ".join(str(p) for p in (*self.chain, target))
            raise ValueError(f"Circular include detected: {cycle}")
        if not target.is_file():
            raise FileNotFoundError(
                f"Include file not found: {target} "
                f"(referenced from {self.chain[-1]})"
            )
        return read_yaml(target, self.chain)


_IncludeLoader.add_constructor("!include", _IncludeLoader.include)


def read_yaml(path: Path, chain: tuple[Path, ...] = ()) -> Any:
    """Parse one YAML file, following ``!include`` directives."""
    path = path.resolve()
    with path.open("r", encoding="utf-8") as fh:
        loader = _IncludeLoader(fh, (*chain, path))
        try:
            return loader.get_single_data()
        finally:
            loader.dispose()


# ---------------------------------------------------------------------------
# Discovery and merge
# ---------------------------------------------------------------------------


def discover_config_files() -> list[Path]:
    """Existing config files, highest precedence first."""
    found: list[Path] = []

    explicit = os.environ.get(CONFIG_ENV_VAR)
    if explicit:
        path = Path(explicit).expanduser().resolve()
        if path.is_file():
            found.append(path)
        else:
            logger.warning("%s points to a missing file: %s", CONFIG_ENV_VAR, path)

    for path in (
        Path.cwd() / ".gitstore" / "config.yml",
        Path.home() / ".config" / "gitstore" / "config.yml",
    ):
        if path.is_file():
            found.append(path)
    return found


def _read_sections(path: Path) -> dict[str, dict[str, Any]]:
    data = read_yaml(path)
    if data is None:
        return {}
    if not isinstance(data, dict):
        logger.warning(
            "Config file %s has non-dict root (%s); skipping",
            path,
            type(data).__name__,
        )
        return {}

    sections: dict[str, dict[str, Any]] = {}
    for name, values in _expand(data).items():
        if values is None:
            continue
        if not isinstance(values, dict):
            raise ValueError(
                f"{path}: section '{name}' must be a mapping, "
                f"got {type(values).__name__}"
            )
        sections[name] = values

    store_path = sections.get("store", {}).get("path")
    if isinstance(store_path, str) and store_path:
        resolved = Path(store_path).expanduser()
        if not resolved.is_absolute():
            resolved = path.parent / resolved
        sections["store"] = {**sections["store"], "path": str(resolved)}
    return sections


def load_config_data(paths: list[Path] | None = None) -> dict[str, dict[str, Any]]:
    """Merge the sections of *paths* (default: the discovered files).

    Lower-precedence files are applied first; within a section, each key
    set by a higher-precedence file replaces the earlier value.
    """
    if paths is None:
        paths = discover_config_files()

    merged: dict[str, dict[str, Any]] = {}
    for path in reversed(paths):
        logger.debug("Loading config: %s", path)
        for name, values in _read_sections(path).items():
            merged.setdefault(name, {}).update(values)
    return merged


def load_config(paths: list[Path] | None = None) -> UnifiedConfig:
    """Load, merge and validate the configuration.

    Raises:
        pydantic.ValidationError: If a merged section has invalid values.
        ValueError: On a circular include or a non-mapping section.
        FileNotFoundError: If an ``!include`` target is missing.
    """
    data = load_config_data(paths)
    if not data:
        logger.debug("No config files found; using defaults")
    return build_config(data)
