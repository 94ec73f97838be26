"""
cloudbuild.py

Responsibility: Run the `test build` workflow for one sample.

High-level flow:
1) Detect the head commit SHA (CircleCI env or `git log`)
2) Copy the key file into the sample directory (when the target requires one)
3) Render and write `repo-tools-cloudbuild.yaml`
4) Submit it with `gcloud container builds submit`
5) Remove the manifest and the copied key file

All gcloud / git interaction goes through `subprocess` here; everything else
(config merging, rendering) lives in its own module.
"""

from __future__ import annotations

import os
import shutil
import subprocess
from dataclasses import replace
from pathlib import Path
from typing import Mapping

from repotools.config import CLOUDBUILD_YAML_NAME, BuildOptions
from repotools.renderer import render_cloudbuild
from repotools.utils import RepoToolsError, error, log

BUILD_TIMEOUT_SECONDS = 20 * 60


class BuildError(RepoToolsError):
    def __init__(self, message: str, returncode: int = 1) -> None:
        super().__init__(message)
        self.returncode = returncode


def get_head_commit_sha(cwd: str | Path, env: Mapping[str, str] | None = None) -> str:
    """
    Return the SHA of HEAD in `cwd`, preferring CIRCLE_SHA1 when CircleCI sets it.

    Returns "" when git is unavailable or `cwd` is not a repository.
    """
    environ = os.environ if env is None else env
    if environ.get("CIRCLE_SHA1"):
        return str(environ["CIRCLE_SHA1"])
    try:
        proc = subprocess.run(
            ["git", "log", "-n", "1", "--pretty=format:%H"],
            cwd=str(cwd),
            check=True,
            stdout=subprocess.PIPE,
            stderr=subprocess.DEVNULL,
            text=True,
            timeout=BUILD_TIMEOUT_SECONDS,
        )
    except (OSError, subprocess.SubprocessError):
        return ""
    return proc.stdout.strip()


def submit_command(builder_project: str | None, async_: bool) -> list[str]:
    cmd = ["gcloud", "container", "builds", "submit", ".", "--config", CLOUDBUILD_YAML_NAME]
    # Without a builder project gcloud falls back to its configured default project.
    if builder_project:
        cmd.extend(["--project", builder_project])
    if async_:
        cmd.append("--async")
    return cmd


def _unlink(path: Path | None) -> None:
    if path is None:
        return
    try:
        path.unlink()
    except FileNotFoundError:
        pass


def cleanup(opts: BuildOptions) -> None:
    """Remove the rendered manifest and the copied key file, if present."""
    _unlink(opts.cloudbuild_yaml_path)
    # Never delete a key file that already lived in the sample directory.
    if opts.copied_key_file_path != opts.key_file_path:
        _unlink(opts.copied_key_file_path)


def _copy_key_file(opts: BuildOptions) -> None:
    src = opts.key_file_path
    dst = opts.copied_key_file_path
    if src is None or dst is None:
        return
    log(opts, "Copying: %s", src)
    if opts.dry_run or src == dst:
        return
    try:
        shutil.copyfile(src, dst)
    except OSError as e:
        raise BuildError(f"Could not copy key file {src}: {e}") from e


def run_build(opts: BuildOptions) -> int:
    """
    Render, submit and clean up a Cloud Build for `opts`.

    Returns the exit status of the gcloud invocation (0 for a dry run).
    """
    if opts.dry_run:
        log(opts, "Beginning dry run...")

    log(opts, "Detected build target: %s", opts.config or opts.local_path.name)
    log(opts, "Detected repository: %s", opts.repo_path)

    sha = get_head_commit_sha(opts.local_path) or "UNKNOWN"
    opts = replace(opts, sha=sha)
    log(opts, "Detected SHA: %s", opts.sha)
    if opts.ci:
        log(opts, "Detected CI: %s", opts.ci)

    returncode = 0
    try:
        if opts.uses_key_file:
            _copy_key_file(opts)
        if opts.project:
            log(opts, "Setting build project ID to: %s", opts.project)

        log(opts, "Compiling: %s", opts.cloudbuild_yaml_path)
        manifest = render_cloudbuild(opts)
        if opts.dry_run:
            log(opts, "Printing: %s\n%s", opts.cloudbuild_yaml_path, manifest)
        else:
            log(opts, "Writing: %s", opts.cloudbuild_yaml_path)
            opts.cloudbuild_yaml_path.write_text(manifest, encoding="utf-8", newline="\n")

        cmd = submit_command(opts.builder_project, opts.async_)
        if not opts.async_:
            log(opts, "Will wait for build to complete.")
        log(opts, "Build command: %s", " ".join(cmd))

        if not opts.dry_run:
            try:
                proc = subprocess.run(cmd, cwd=str(opts.local_path), timeout=BUILD_TIMEOUT_SECONDS)
            except subprocess.TimeoutExpired as e:
                raise BuildError(f"Build did not finish within {BUILD_TIMEOUT_SECONDS} seconds") from e
            except OSError as e:
                raise BuildError(f"Could not run gcloud: {e}") from e
            returncode = proc.returncode
            if returncode != 0:
                error(opts, "Build command exited with status %d", returncode)
    finally:
        if not opts.dry_run:
            cleanup(opts)

    if opts.dry_run:
        log(opts, "Dry run complete.")
    return returncode
