# --- test import path bootstrap (src/ layout) ---
import sys as _sys
from pathlib import Path as _Path

_SRC = _Path(__file__).resolve().parents[1] / "src"
if _SRC.is_dir():
    _p = str(_SRC)
    if _p not in _sys.path:
        _sys.path.insert(0, _p)
# --- end bootstrap ---

import sys
import tempfile
from pathlib import Path

import pytest

from duplicator.core.models import TargetRef, build_directive, build_namespace
from duplicator.store.memory import MemoryStore
from k8s_objects import configmap


@pytest.fixture
def store() -> MemoryStore:
    """Namespaces ns-a (staging) and ns-b (prod), source/app-config and directive ops/D1."""
    s = MemoryStore()
    s.create(build_namespace("ops"))
    s.create(build_namespace("source"))
    s.create(build_namespace("ns-a", {"env": "staging"}))
    s.create(build_namespace("ns-b", {"env": "prod"}))
    s.create(configmap("source", "app-config", {"k": "v"}))
    s.create(
        build_directive(
            "ops",
            "D1",
            selector={"env": "staging"},
            targets=[TargetRef(kind="ConfigMap", namespace="source", name="app-config")],
        )
    )
    s.writes.clear()
    return s


@pytest.fixture
def dup_path() -> Path:
    repo_root = Path(__file__).resolve().parents[1]
    local = repo_root / ".venv" / "bin" / "dup"
    if local.exists():
        return local

    # Use a repo-local shim when local venv entrypoint is unavailable.
    shim_dir = Path(tempfile.mkdtemp(prefix="dup-shim-"))
    shim = shim_dir / "dup"
    shim.write_text(
        f"""#!/usr/bin/env bash
set -Eeuo pipefail
export PYTHONPATH=\"{repo_root}/src${{PYTHONPATH:+:${{PYTHONPATH}}}}\"
exec \"{sys.executable}\" -c 'import sys; from duplicator.cli import main; raise SystemExit(main())' \"$@\"
""",
        encoding="utf-8",
    )
    shim.chmod(0o755)
    return shim
