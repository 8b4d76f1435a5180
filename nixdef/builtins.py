"""The table of Nix builtins, queried from a `nix` executable."""

from __future__ import annotations

import json
import subprocess
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Mapping

NIX = "nix"

_EVAL_ARGS = ("eval", "--experimental-features", "nix-command", "--store", "dummy://")


class NixCommandError(RuntimeError):
    """Raised when a `nix` command cannot be run or gives unusable output."""


class BuiltinKind(Enum):
    CONST = "const"
    FUNCTION = "function"
    ATTRSET = "attrset"


@dataclass(frozen=True)
class Builtin:
    kind: BuiltinKind
    is_global: bool
    summary: str
    doc: str | None


def builtin_kind(name: str) -> BuiltinKind:
    if name == "builtins":
        return BuiltinKind.ATTRSET
    if name in ("true", "false", "null"):
        return BuiltinKind.CONST
    return BuiltinKind.FUNCTION


def builtin_summary(name: str, args: Iterable[str]) -> str:
    return f"`builtins.{name}{''.join(' ' + arg for arg in args)}`"


def make_builtin(name: str, is_global: bool, entry: Mapping[str, Any] | None) -> Builtin:
    """Build a builtin from its name, globality and dumped documentation entry."""
    if entry is None:
        return Builtin(builtin_kind(name), is_global, builtin_summary(name, ()), None)
    args = list(entry["args"])
    if len(args) != entry["arity"]:
        raise ValueError(
            f"Arity mismatch for {name}: {len(args)} args but arity {entry['arity']}"
        )
    return Builtin(builtin_kind(name), is_global, builtin_summary(name, args), entry["doc"])


def _run_json(argv: list[str]) -> Any:
    try:
        proc = subprocess.run(
            argv, capture_output=True, stdin=subprocess.DEVNULL, check=False
        )
    except OSError as exc:
        raise NixCommandError(f"Failed to run {argv[0]!r}. Is `nix` accessible?") from exc
    if proc.returncode != 0:
        stderr = proc.stderr.decode(errors="replace").strip()
        raise NixCommandError(f"Command {argv!r} failed with status {proc.returncode}: {stderr}")
    try:
        return json.loads(proc.stdout)
    except json.JSONDecodeError as exc:
        raise NixCommandError(f"Command {argv!r} produced invalid JSON") from exc


def query_builtin_names(nix: str = NIX) -> list[str]:
    """Names of all attributes of `builtins`, in Nix's sorted order."""
    names = _run_json([nix, *_EVAL_ARGS, "--json", "--expr", "builtins.attrNames builtins"])
    if not isinstance(names, list) or not all(isinstance(n, str) for n in names):
        raise NixCommandError("Expected a list of builtin names")
    return names


def probe_globals(names: Iterable[str], nix: str = NIX) -> list[bool]:
    """For each name, whether it evaluates as a global name. Probes run in parallel."""
    children = []
    try:
        for name in names:
            children.append(
                subprocess.Popen(
                    [nix, *_EVAL_ARGS, "--expr", name],
                    stdin=subprocess.DEVNULL,
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.DEVNULL,
                )
            )
    except OSError as exc:
        for child in children:
            child.kill()
            child.wait()
        raise NixCommandError(f"Failed to spawn {nix!r}") from exc
    return [child.wait() == 0 for child in children]


def dump_builtins(nix: str = NIX) -> dict[str, dict[str, Any]]:
    """Documentation entries of builtins, keyed and sorted by name."""
    raw = _run_json([nix, "__dump-builtins"])
    if not isinstance(raw, dict):
        raise NixCommandError("Expected an object of builtin documentation")
    dumped = {}
    for name in sorted(raw):
        entry = raw[name]
        if not (
            isinstance(entry, dict)
            and isinstance(entry.get("args"), list)
            and isinstance(entry.get("arity"), int)
            and isinstance(entry.get("doc"), str)
        ):
            raise NixCommandError(f"Malformed documentation entry for {name!r}")
        dumped[name] = {"args": list(entry["args"]), "arity": entry["arity"], "doc": entry["doc"]}
    return dumped


def load_builtins(nix: str = NIX) -> dict[str, Builtin]:
    """Query `nix` for every builtin with its kind, globality, summary and docs."""
    names = query_builtin_names(nix)
    globals_ = probe_globals(names, nix)
    dumped = dump_builtins(nix)
    return {
        name: make_builtin(name, is_global, dumped.get(name))
        for name, is_global in zip(names, globals_)
    }