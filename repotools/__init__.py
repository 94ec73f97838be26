"""
repotools package

This package implements the `samples` developer CLI for sample repositories.

Key responsibilities are split across modules:
- `utils.py`: argument tokenizer, shared errors, target-prefixed logging
- `build_packs.py`: per-language default configuration (YAML package data)
- `config.py`: merge build pack defaults, CLI flags and the sample's config file
- `renderer.py`: render the Cloud Build manifest from a Jinja2 template
- `cloudbuild.py`: write the manifest, submit it with gcloud, clean up
- `cli.py`: CLI entrypoint (`samples test build`)
"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.1.0"
