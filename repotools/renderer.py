"""
renderer.py

Responsibility: Render the Cloud Build manifest (`repo-tools-cloudbuild.yaml`) for a sample.

Rules:
- The template is read as UTF-8 and rendered with Jinja2 (StrictUndefined).
- Command argument strings are split with `parse_args` before rendering, so each
  build step receives an argv-style list.
- Output newlines are normalized to `\\n`.

This module intentionally does NOT write files or run gcloud.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any

from jinja2 import Environment, StrictUndefined, TemplateError

from repotools.config import BuildOptions
from repotools.utils import RepoToolsError, parse_args

DEFAULT_TEMPLATE_PATH = Path(__file__).parent / "templates" / "cloudbuild.yaml.j2"

_NON_SLUG = re.compile(r"[^a-z0-9]+")


class RenderError(RepoToolsError):
    pass


def slugify(value: Any) -> str:
    return _NON_SLUG.sub("-", str(value).lower()).strip("-")


def _environment() -> Environment:
    env = Environment(
        autoescape=False,
        undefined=StrictUndefined,
        keep_trailing_newline=True,
        trim_blocks=True,
        lstrip_blocks=True,
    )
    env.filters["slugify"] = slugify
    env.filters["trim"] = lambda value: str(value).strip()
    return env


def build_context(opts: BuildOptions) -> dict[str, Any]:
    # Raises UnterminatedQuoteError for a malformed argument string.
    return {
        "test": opts.test,
        "image": opts.image,
        "project": opts.project or "",
        "timeout": opts.timeout,
        "ci": opts.ci,
        "sha": opts.sha,
        "repo_path": opts.repo_path,
        "run": opts.run,
        "app": opts.app,
        "deploy": opts.deploy,
        "key_file_name": opts.key_file_name if opts.uses_key_file else None,
        "install_cmd": opts.install_cmd,
        "install_args": parse_args(opts.install_args),
        "test_cmd": opts.test_cmd,
        "test_args": parse_args(opts.test_args),
        "web_cmd": opts.web_cmd,
        "web_args": parse_args(opts.web_args),
    }


def render_cloudbuild(opts: BuildOptions, template_path: str | Path | None = None) -> str:
    """
    Render the manifest text for `opts`.
    """
    path = Path(template_path) if template_path is not None else DEFAULT_TEMPLATE_PATH
    if not path.is_file():
        raise RenderError(f"Template file not found: {path}")

    context = build_context(opts)
    try:
        template = _environment().from_string(path.read_text(encoding="utf-8"))
        out = template.render(**context)
    except TemplateError as e:
        raise RenderError(f"Failed rendering template file: {path.name}") from e
    return out.replace("\r\n", "\n")
