"""Covariate-specific gene co-expression networks."""

from .config import NetworkConfig, PathsConfig, PipelineConfig, SelectionConfig


def main(*args, **kwargs):  # pragma: no cover - thin wrapper for CLI entrypoint
    # Lazy import avoids double-import warnings when running `python -m covnet.cli`.
    from .cli import main as _cli_main

    return _cli_main(*args, **kwargs)


__all__ = [
    "PipelineConfig",
    "PathsConfig",
    "SelectionConfig",
    "NetworkConfig",
    "main",
]
