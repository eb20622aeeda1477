"""Run manifest emission for reproducible analysis runs.

Each entry point writes a `run_manifest_<entrypoint>_<run_id>.json` capturing:
- CLI args and the resolved configuration file
- software versions (python + analysis stack)
- git commit (when run inside a checkout)
- sha256 of the dataset that was read
"""

from __future__ import annotations

import hashlib
import json
import platform
import subprocess
import sys
from importlib import metadata
from pathlib import Path
from typing import Any, Dict, Optional


_STACK = ("numpy", "pandas", "matplotlib", "scikit-learn", "scipy", "statsmodels", "h5py", "PyYAML")


def _safe_git_commit() -> Optional[str]:
    """Best-effort git commit hash (None if not in a git repo)."""
    try:
        out = subprocess.check_output(["git", "rev-parse", "HEAD"], stderr=subprocess.DEVNULL)
        return out.decode("utf-8").strip()
    except (OSError, subprocess.CalledProcessError):
        return None


def package_versions() -> Dict[str, Optional[str]]:
    out: Dict[str, Optional[str]] = {}
    for dist in _STACK:
        try:
            out[dist] = metadata.version(dist)
        except metadata.PackageNotFoundError:
            out[dist] = None
    return out


def dataset_fingerprint(path: Path) -> Dict[str, Any]:
    """sha256 over a dataset file, or over the sorted CSV tables of a dataset directory."""
    h = hashlib.sha256()
    files = sorted(p for p in path.rglob("*") if p.is_file()) if path.is_dir() else [path]
    for p in files:
        h.update(p.name.encode("utf-8"))
        h.update(b"\0")
        with p.open("rb") as f:
            for chunk in iter(lambda: f.read(1 << 20), b""):
                h.update(chunk)
        h.update(b"\0")
    return {"path": str(path), "sha256": h.hexdigest(), "n_files": len(files)}


def write_manifest(
    *,
    out_dir: Path,
    run_id: str,
    entrypoint: str,
    args: Dict[str, Any],
    dataset_path: Optional[Path] = None,
    extra: Optional[Dict[str, Any]] = None,
) -> Path:
    out_dir.mkdir(parents=True, exist_ok=True)
    manifest_path = out_dir / f"run_manifest_{entrypoint}_{run_id}.json"

    payload: Dict[str, Any] = {
        "run_id": run_id,
        "entrypoint": entrypoint,
        "args": args,
        "platform": platform.platform(),
        "git_commit": _safe_git_commit(),
        "python": {
            "version": platform.python_version(),
            "executable": sys.executable,
        },
        "packages": package_versions(),
    }
    if dataset_path is not None:
        payload["dataset"] = dataset_fingerprint(dataset_path)
    if extra:
        payload["extra"] = extra

    # Atomic write
    tmp = manifest_path.with_suffix(".json.tmp")
    tmp.write_text(json.dumps(payload, indent=2, sort_keys=True, default=str), encoding="utf-8")
    tmp.replace(manifest_path)
    return manifest_path
