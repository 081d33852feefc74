"""Resolve the Stockfish binary used for analysis.

Order: explicit override, ``STOCKFISH_PATH``, the platform default under
``<base_dir>/engines/<platform-arch>/``, then a scan of ``<base_dir>/engines``
for anything named like stockfish, then ``PATH``.
"""

import logging
import os
import platform as _platform
import shutil
import sys
from typing import Mapping, Optional

from cardgen.errors import EngineNotFound

logger = logging.getLogger(__name__)

ENV_VAR = "STOCKFISH_PATH"
ENGINES_DIR = "engines"

_PLATFORM_BINARIES = {
    ("win32", "x64"): ("win-x64", "stockfish.exe"),
    ("darwin", "arm64"): ("mac-arm64", "stockfish"),
    ("darwin", "x64"): ("mac-x64", "stockfish"),
    ("linux", "x64"): ("linux-x64", "stockfish"),
    ("linux", "arm64"): ("linux-arm64", "stockfish"),
}

_ARCH_ALIASES = {
    "x86_64": "x64",
    "amd64": "x64",
    "x64": "x64",
    "aarch64": "arm64",
    "arm64": "arm64",
}


def _is_usable(path: Optional[str]) -> bool:
    if not path or not os.path.isfile(path):
        return False
    return path.lower().endswith(".exe") or os.access(path, os.X_OK)


def _platform_key(plat: str, machine: str):
    plat = "linux" if plat.startswith("linux") else plat
    return plat, _ARCH_ALIASES.get(machine.lower(), machine.lower())


def default_engine_path(base_dir: str, plat: str, machine: str) -> Optional[str]:
    """Conventional binary location for a platform, or None if unmapped."""
    entry = _PLATFORM_BINARIES.get(_platform_key(plat, machine))
    if entry is None:
        return None
    folder, name = entry
    return os.path.join(base_dir, ENGINES_DIR, folder, name)


def scan_for_engine(base_dir: str) -> Optional[str]:
    """First usable file under ``<base_dir>/engines`` whose name starts with 'stockfish'."""
    root = os.path.join(base_dir, ENGINES_DIR)
    if not os.path.isdir(root):
        return None
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        for name in sorted(filenames):
            candidate = os.path.join(dirpath, name)
            if name.lower().startswith("stockfish") and _is_usable(candidate):
                return candidate
    return None


def resolve_engine_path(
    override: Optional[str] = None,
    base_dir: str = ".",
    packaged: bool = False,
    plat: Optional[str] = None,
    machine: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
) -> str:
    """Return an absolute path to a usable engine binary or raise EngineNotFound.

    ``packaged`` only changes the wording of the failure: packaged builds ship
    engines under their resources directory, dev checkouts under the repo.
    """
    env = os.environ if env is None else env
    plat = plat or sys.platform
    machine = machine or _platform.machine()

    candidates = [override, env.get(ENV_VAR)]
    for candidate in candidates:
        if _is_usable(candidate):
            return os.path.abspath(candidate)
        if candidate:
            logger.warning("Ignoring engine path %s (missing or not executable)", candidate)

    default = default_engine_path(base_dir, plat, machine)
    if _is_usable(default):
        return os.path.abspath(default)

    scanned = scan_for_engine(base_dir)
    if scanned:
        return os.path.abspath(scanned)

    on_path = shutil.which("stockfish")
    if on_path:
        return os.path.abspath(on_path)

    where = "resources" if packaged else "the project"
    raise EngineNotFound(
        f"Stockfish not found at: {default or os.path.join(base_dir, ENGINES_DIR)}\n"
        f"Set {ENV_VAR} or place the binary under {ENGINES_DIR}/<platform-arch>/ in {where}"
    )
