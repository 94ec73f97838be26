"""
build_packs.py

Responsibility: Load per-language default options ("build packs") into typed models.

The packs ship as `build_packs.yaml` next to this module. Values the YAML leaves
null are filled from the environment at load time, so a CI job only needs to
export GCLOUD_PROJECT / GOOGLE_APPLICATION_CREDENTIALS.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import yaml

from repotools.utils import RepoToolsError

DEFAULT_BUILD_PACKS_PATH = Path(__file__).with_name("build_packs.yaml")
DEFAULT_BUILD_PACK = "nodejs"

_PYTHON_MARKERS = ("requirements.txt", "setup.py", "pyproject.toml")
_FALSEY = {"", "0", "false", "no", "off"}


class BuildPackError(RepoToolsError):
    pass


@dataclass(frozen=True)
class CommandSpec:
    """A command plus its default arguments, e.g. `npm` + `["install"]`."""

    cmd: str
    args: list[str] = field(default_factory=list)

    @property
    def args_string(self) -> str:
        return " ".join(self.args)


@dataclass(frozen=True)
class GlobalDefaults:
    project: str | None = None
    config: str | None = None
    config_key: str | None = None


@dataclass(frozen=True)
class BuildDefaults:
    builder_project: str | None = None
    key_file: str | None = None
    async_: bool = False
    ci: bool = False
    timeout: str = "20m"
    run: bool = True
    app: bool = False
    deploy: bool = False
    requires_key_file: bool = False
    requires_project: bool = False
    image: str = "gcr.io/cloud-builders/npm"


@dataclass(frozen=True)
class BuildPack:
    name: str
    global_: GlobalDefaults
    build: BuildDefaults
    install: CommandSpec
    run: CommandSpec
    app: CommandSpec


def to_bool(value: Any) -> bool:
    """Interpret YAML/JSON/env values, where strings like "false" or "0" are false."""
    if isinstance(value, str):
        return value.strip().lower() not in _FALSEY
    return bool(value)


def normalize_timeout(value: Any) -> str:
    """Cloud Build durations are strings; bare numbers are taken as seconds."""
    if isinstance(value, bool):
        raise BuildPackError(f"Invalid timeout: {value!r}")
    if isinstance(value, (int, float)):
        return f"{int(value)}s"
    text = str(value).strip()
    return f"{text}s" if text.isdigit() else text


def _env_flag(env: Mapping[str, str], *names: str) -> bool:
    for name in names:
        value = env.get(name)
        if value is not None and to_bool(value):
            return True
    return False


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    return str(value).strip() or None


def _mapping(data: Any, where: str) -> dict[str, Any]:
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise BuildPackError(f"`{where}` must be a mapping.")
    return data


def _command(data: Any, where: str) -> CommandSpec:
    raw = _mapping(data, where)
    cmd = _optional_str(raw.get("cmd"))
    if not cmd:
        raise BuildPackError(f"`{where}.cmd` is required.")
    args = raw.get("args") or []
    if not isinstance(args, list):
        raise BuildPackError(f"`{where}.args` must be a list.")
    return CommandSpec(cmd=cmd, args=[str(a) for a in args])


def _parse_pack(name: str, data: Any, env: Mapping[str, str]) -> BuildPack:
    raw = _mapping(data, name)
    if "global" not in raw or "test" not in raw:
        raise BuildPackError(f"Build pack `{name}` must define `global` and `test`.")

    g = _mapping(raw["global"], f"{name}.global")
    test = _mapping(raw["test"], f"{name}.test")
    b = _mapping(test.get("build"), f"{name}.test.build")

    project = _optional_str(g.get("project")) or _optional_str(env.get("GCLOUD_PROJECT"))
    global_ = GlobalDefaults(
        project=project,
        config=_optional_str(g.get("config")),
        config_key=_optional_str(g.get("config_key")),
    )

    ci_raw = b.get("ci")
    build = BuildDefaults(
        builder_project=_optional_str(b.get("builder_project")) or _optional_str(env.get("GCLOUD_PROJECT")),
        key_file=_optional_str(b.get("key_file")) or _optional_str(env.get("GOOGLE_APPLICATION_CREDENTIALS")),
        async_=to_bool(b.get("async", False)),
        ci=_env_flag(env, "CI", "CIRCLECI") if ci_raw is None else to_bool(ci_raw),
        timeout=normalize_timeout(b.get("timeout") or "20m"),
        run=to_bool(b.get("run", True)),
        app=to_bool(b.get("app", False)),
        deploy=to_bool(b.get("deploy", False)),
        requires_key_file=to_bool(b.get("requires_key_file", False)),
        requires_project=to_bool(b.get("requires_project", False)),
        image=str(b.get("image") or BuildDefaults.image),
    )

    return BuildPack(
        name=name,
        global_=global_,
        build=build,
        install=_command(test.get("install"), f"{name}.test.install"),
        run=_command(test.get("run"), f"{name}.test.run"),
        app=_command(test.get("app"), f"{name}.test.app"),
    )


def load_build_packs(
    path: str | Path | None = None,
    *,
    env: Mapping[str, str] | None = None,
) -> dict[str, BuildPack]:
    """
    Parse the build packs YAML document into `BuildPack` models, keyed by name.
    """
    src = Path(path) if path is not None else DEFAULT_BUILD_PACKS_PATH
    if not src.exists():
        raise BuildPackError(f"Build packs file does not exist: {src}")
    try:
        data = yaml.safe_load(src.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise BuildPackError(f"Failed to parse {src}") from e
    if not isinstance(data, dict):
        raise BuildPackError("Build packs file must be a mapping at the top level.")

    environ = os.environ if env is None else env
    return {str(name): _parse_pack(str(name), raw, environ) for name, raw in sorted(data.items())}


def get_build_pack(name: str, packs: Mapping[str, BuildPack] | None = None) -> BuildPack:
    available = load_build_packs() if packs is None else packs
    try:
        return available[name]
    except KeyError:
        known = ", ".join(sorted(available)) or "(none)"
        raise BuildPackError(f"Unknown build pack `{name}` (known: {known})") from None


def detect_build_pack(local_path: str | Path) -> str:
    """
    Guess the build pack from marker files in the sample directory.
    """
    root = Path(local_path)
    if (root / "package.json").exists():
        return DEFAULT_BUILD_PACK
    if any((root / marker).exists() for marker in _PYTHON_MARKERS):
        return "python"
    return DEFAULT_BUILD_PACK
