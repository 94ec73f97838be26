import json
from pathlib import Path
from typing import Any

import pytest

from repotools.build_packs import BuildPack, load_build_packs
from repotools.config import (
    ConfigError,
    get_repo_path,
    load_sample_config,
    normalize_keys,
    resolve_build_options,
)


@pytest.fixture
def node_pack() -> BuildPack:
    return load_build_packs(env={})["nodejs"]


def _write_package_json(root: Path, tools: dict[str, Any] | None = None, **top: Any) -> None:
    data: dict[str, Any] = {
        "name": "nodejs-docs-samples-cloudsql",
        "repository": {"type": "git", "url": "https://github.com/GoogleCloudPlatform/nodejs-docs-samples.git"},
        **top,
    }
    if tools is not None:
        data["cloud-repo-tools"] = tools
    (root / "package.json").write_text(json.dumps(data), encoding="utf-8")


def test_normalize_keys() -> None:
    out = normalize_keys({"requiresKeyFile": True, "install-cmd": "yarn", "async": True, "test": "x"})
    assert out == {"requires_key_file": True, "install_cmd": "yarn", "async_": True, "test": "x"}


def test_get_repo_path() -> None:
    assert get_repo_path("https://github.com/owner/name.git") == "/owner/name"
    assert get_repo_path({"url": "git+https://github.com/owner/name"}) == "/owner/name"
    with pytest.raises(ConfigError, match="Missing repository"):
        get_repo_path(None)
    with pytest.raises(ConfigError, match="Missing repository"):
        get_repo_path({"type": "git"})


def test_load_sample_config_disabled(tmp_path: Path) -> None:
    assert load_sample_config(tmp_path, "false", "cloud-repo-tools") == ({}, {})
    assert load_sample_config(tmp_path, None, None) == ({}, {})


def test_load_sample_config_missing_file(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="Could not locate"):
        load_sample_config(tmp_path, "package.json", None)


def test_load_sample_config_parse_error(tmp_path: Path) -> None:
    (tmp_path / "package.json").write_text('{"name": [}', encoding="utf-8")
    with pytest.raises(ConfigError, match="Failed to parse"):
        load_sample_config(tmp_path, "package.json", None)


def test_load_sample_config_nested_key(tmp_path: Path) -> None:
    _write_package_json(tmp_path, {"requiresKeyFile": True})
    top, config = load_sample_config(tmp_path, "package.json", "cloud-repo-tools")
    assert top["name"] == "nodejs-docs-samples-cloudsql"
    assert config == {"requiresKeyFile": True}


def test_resolve_uses_build_pack_defaults(tmp_path: Path, node_pack: BuildPack) -> None:
    _write_package_json(tmp_path)
    opts = resolve_build_options({}, node_pack, tmp_path)

    assert opts.local_path == tmp_path.resolve()
    assert opts.test == "nodejs-docs-samples-cloudsql"
    assert opts.repo_path == "/GoogleCloudPlatform/nodejs-docs-samples"
    assert opts.install_cmd == "npm"
    assert opts.install_args == "install"
    assert opts.test_args == "test"
    assert opts.run is True
    assert opts.async_ is False
    assert opts.image == "gcr.io/cloud-builders/npm"
    assert opts.cloudbuild_yaml_path == tmp_path.resolve() / "repo-tools-cloudbuild.yaml"
    assert opts.copied_key_file_path is None


def test_resolve_cli_overrides_defaults(tmp_path: Path, node_pack: BuildPack) -> None:
    _write_package_json(tmp_path)
    cli = {"run": False, "async_": True, "test_args": "run system-test", "install_args": "", "project": None}
    opts = resolve_build_options(cli, node_pack, tmp_path)

    assert opts.run is False
    assert opts.async_ is True
    assert opts.test_args == "run system-test"
    # Empty argument strings fall back to the build pack.
    assert opts.install_args == "install"
    assert opts.project is None


def test_resolve_config_file_supersedes_cli(tmp_path: Path, node_pack: BuildPack) -> None:
    _write_package_json(
        tmp_path,
        {"test": "cloudsql", "testArgs": ["run", "unit-test"], "builderProject": "from-config"},
    )
    cli = {"builder_project": "from-cli", "timeout": "30m"}
    opts = resolve_build_options(cli, node_pack, tmp_path)

    assert opts.test == "cloudsql"
    assert opts.builder_project == "from-config"
    assert opts.test_args == "run unit-test"
    assert opts.timeout == "30m"


def test_resolve_test_name_falls_back_to_directory(tmp_path: Path, node_pack: BuildPack) -> None:
    sample = tmp_path / "hello-world"
    sample.mkdir()
    (sample / "package.json").write_text(
        json.dumps({"repository": "https://github.com/owner/samples.git"}), encoding="utf-8"
    )
    opts = resolve_build_options({}, node_pack, sample)
    assert opts.test == "hello-world"


def test_resolve_requires_key_file(tmp_path: Path, node_pack: BuildPack) -> None:
    _write_package_json(tmp_path, {"requiresKeyFile": True})
    with pytest.raises(ConfigError, match="requires a key file"):
        resolve_build_options({}, node_pack, tmp_path)

    key = tmp_path.parent / "key.json"
    opts = resolve_build_options({"key_file": str(key)}, node_pack, tmp_path)
    assert opts.uses_key_file
    assert opts.key_file_name == "key.json"
    assert opts.copied_key_file_path == tmp_path.resolve() / "key.json"


def test_resolve_requires_project(tmp_path: Path, node_pack: BuildPack) -> None:
    _write_package_json(tmp_path, {"requiresProject": True})
    with pytest.raises(ConfigError, match="requires a project ID"):
        resolve_build_options({}, node_pack, tmp_path)


def test_resolve_requires_repository(tmp_path: Path, node_pack: BuildPack) -> None:
    (tmp_path / "package.json").write_text(json.dumps({"name": "x"}), encoding="utf-8")
    with pytest.raises(ConfigError, match="Missing repository"):
        resolve_build_options({}, node_pack, tmp_path)


def test_load_sample_config_tab_indented_json(tmp_path: Path) -> None:
    data = {"name": "tabs", "cloud-repo-tools": {"requiresProject": True}}
    (tmp_path / "package.json").write_text(json.dumps(data, indent="\t"), encoding="utf-8")
    top, config = load_sample_config(tmp_path, "package.json", "cloud-repo-tools")
    assert top["name"] == "tabs"
    assert config == {"requiresProject": True}


def test_load_sample_config_yaml(tmp_path: Path) -> None:
    (tmp_path / "repo-tools.yaml").write_text("name: from-yaml\nrun: false\n", encoding="utf-8")
    top, config = load_sample_config(tmp_path, "repo-tools.yaml", None)
    assert top == config == {"name": "from-yaml", "run": False}


def test_resolve_coerces_config_values(tmp_path: Path, node_pack: BuildPack) -> None:
    _write_package_json(tmp_path, {"run": "false", "deploy": "yes", "async": 0, "timeout": 1200})
    opts = resolve_build_options({}, node_pack, tmp_path)

    assert opts.run is False
    assert opts.deploy is True
    assert opts.async_ is False
    assert opts.timeout == "1200s"


def test_resolve_rejects_boolean_timeout(tmp_path: Path, node_pack: BuildPack) -> None:
    _write_package_json(tmp_path, {"timeout": True})
    with pytest.raises(ConfigError, match="Invalid timeout"):
        resolve_build_options({}, node_pack, tmp_path)
