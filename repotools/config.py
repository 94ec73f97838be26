"""
config.py

Responsibility: Resolve the options of `samples test build` into a single typed model.

Sources, lowest to highest precedence:
1) build pack defaults (`build_packs.py`)
2) command-line flags (None means "not given")
3) the sample's own config file (e.g. the `cloud-repo-tools` key of package.json)

The renderer and the build runner treat the resulting `BuildOptions` as the
single source of truth.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Mapping
from urllib.parse import urlparse

import yaml

from repotools.build_packs import BuildPack, normalize_timeout, to_bool
from repotools.utils import RepoToolsError

logger = logging.getLogger(__name__)

CLOUDBUILD_YAML_NAME = "repo-tools-cloudbuild.yaml"

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])([A-Z])")

# Keys that may be overridden from the CLI or the sample config file.
_DERIVED = {"local_path", "test", "repo_path", "sha", "build_pack", "image", "dry_run"}
# String options where an empty value falls back to the default.
_FALLBACK_ON_EMPTY = {"install_cmd", "install_args", "test_cmd", "test_args", "web_cmd", "web_args"}
_BOOL_OPTIONS = {"async_", "ci", "run", "app", "deploy", "requires_key_file", "requires_project"}


class ConfigError(RepoToolsError):
    pass


@dataclass(frozen=True)
class BuildOptions:
    """Fully resolved options for one `test build` invocation."""

    local_path: Path
    test: str
    build_pack: str
    image: str
    dry_run: bool = False

    project: str | None = None
    builder_project: str | None = None
    key_file: str | None = None
    config: str | None = None
    config_key: str | None = None

    async_: bool = False
    ci: bool = False
    timeout: str = "20m"
    run: bool = True
    app: bool = False
    deploy: bool = False
    requires_key_file: bool = False
    requires_project: bool = False

    install_cmd: str = ""
    install_args: str = ""
    test_cmd: str = ""
    test_args: str = ""
    web_cmd: str = ""
    web_args: str = ""

    repo_path: str = "UNKNOWN"
    sha: str = "UNKNOWN"

    @property
    def cloudbuild_yaml_path(self) -> Path:
        return self.local_path / CLOUDBUILD_YAML_NAME

    @property
    def uses_key_file(self) -> bool:
        return bool(self.key_file and self.requires_key_file)

    @property
    def key_file_path(self) -> Path | None:
        if not self.key_file:
            return None
        return Path(self.key_file).expanduser().resolve()

    @property
    def key_file_name(self) -> str | None:
        path = self.key_file_path
        return path.name if path is not None else None

    @property
    def copied_key_file_path(self) -> Path | None:
        if not self.uses_key_file:
            return None
        return self.local_path / str(self.key_file_name)


_OPTION_NAMES = {f.name for f in fields(BuildOptions)}


def normalize_keys(mapping: Mapping[str, Any]) -> dict[str, Any]:
    """
    Convert camelCase / kebab-case keys to the snake_case names used by `BuildOptions`.
    """
    out: dict[str, Any] = {}
    for key, value in mapping.items():
        k = _CAMEL_BOUNDARY.sub(r"_\1", str(key)).replace("-", "_").lower()
        if k == "async":
            k = "async_"
        out[k] = value
    return out


def load_sample_config(
    local_path: str | Path,
    config: str | None,
    config_key: str | None,
) -> tuple[dict[str, Any], dict[str, Any]]:
    """
    Load the sample's config file.

    Returns (top_config, config) where `config` is the mapping nested under
    `config_key` (or the whole document when no key is given).
    """
    if not config or config == "false":
        return {}, {}

    path = Path(local_path) / config
    if not path.exists():
        raise ConfigError(f"Could not locate {path}")
    text = path.read_text(encoding="utf-8")
    try:
        if path.suffix.lower() == ".json":
            data = json.loads(text)
        else:
            data = yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigError(f"Failed to parse {path}") from e

    top_config = data if isinstance(data, dict) else {}
    if config_key:
        nested = top_config.get(config_key) or {}
        if not isinstance(nested, dict):
            raise ConfigError(f"`{config_key}` in {path} must be an object/mapping.")
        return top_config, nested
    return top_config, top_config


def get_repo_path(repository: Any) -> str:
    """
    Return the repository path (e.g. `/owner/name`) from a URL string or `{"url": ...}`.
    """
    if isinstance(repository, str):
        repository = {"url": repository}
    if not isinstance(repository, dict) or not repository.get("url"):
        raise ConfigError("Missing repository!")
    return urlparse(str(repository["url"])).path.replace(".git", "")


def _pack_defaults(pack: BuildPack) -> dict[str, Any]:
    b = pack.build
    return {
        "project": pack.global_.project,
        "config": pack.global_.config,
        "config_key": pack.global_.config_key,
        "builder_project": b.builder_project,
        "key_file": b.key_file,
        "async_": b.async_,
        "ci": b.ci,
        "timeout": b.timeout,
        "run": b.run,
        "app": b.app,
        "deploy": b.deploy,
        "requires_key_file": b.requires_key_file,
        "requires_project": b.requires_project,
        "install_cmd": pack.install.cmd,
        "install_args": pack.install.args_string,
        "test_cmd": pack.run.cmd,
        "test_args": pack.run.args_string,
        "web_cmd": pack.app.cmd,
        "web_args": pack.app.args_string,
    }


def _coerce(key: str, value: Any) -> Any:
    # Config files may list arguments instead of writing one string.
    if key.endswith("_args") and isinstance(value, list):
        return " ".join(str(v) for v in value)
    if key in _BOOL_OPTIONS:
        return to_bool(value)
    if key == "timeout":
        if isinstance(value, bool):
            raise ConfigError(f"Invalid timeout: {value!r}")
        return normalize_timeout(value)
    return value


def _overlay(base: dict[str, Any], overrides: Mapping[str, Any], *, source: str) -> None:
    for key, value in overrides.items():
        if key in _DERIVED or key not in _OPTION_NAMES:
            continue
        if value is None or (key in _FALLBACK_ON_EMPTY and value == ""):
            continue
        logger.debug("%s sets %s=%r", source, key, value)
        base[key] = _coerce(key, value)


def resolve_build_options(
    cli: Mapping[str, Any],
    pack: BuildPack,
    local_path: str | Path,
    *,
    dry_run: bool = False,
) -> BuildOptions:
    """
    Merge build pack defaults, CLI values and the sample config into `BuildOptions`.

    Raises ConfigError when the sample config cannot be loaded, when a required
    key file or project is missing, or when no repository is declared.
    """
    root = Path(local_path).resolve()
    merged = _pack_defaults(pack)
    _overlay(merged, cli, source="command line")

    top_config, config = load_sample_config(root, merged.get("config"), merged.get("config_key"))
    _overlay(merged, normalize_keys(config), source=str(merged.get("config")))

    test = config.get("test") or config.get("name") or top_config.get("name") or root.name

    if merged["requires_key_file"] and not merged["key_file"]:
        raise ConfigError("Build target requires a key file but none was provided!")
    if merged["requires_project"] and not merged["project"]:
        raise ConfigError("Build target requires a project ID but none was provided!")

    repo_path = get_repo_path(config.get("repository") or top_config.get("repository")) or "UNKNOWN"

    return BuildOptions(
        local_path=root,
        test=str(test),
        build_pack=pack.name,
        image=pack.build.image,
        dry_run=dry_run,
        repo_path=repo_path,
        **merged,
    )
