"""Semantic model of Nix expressions: source database, modules, scopes, name resolution and liveness."""

__version__ = "0.1.0"

__all__ = ["base", "builtins", "diagnostic", "liveness", "module", "nameres", "path"]