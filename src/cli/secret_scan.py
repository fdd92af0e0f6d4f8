"""
cli/secret_scan.py — Pre-commit scan of tracked files for obvious credential leaks.

A coarse net for the secrets this suite handles (IDAM/S2S/CourtNav client
secrets, AWS keys, the xuiwebapp OAuth secret).  Anything thorough belongs in
Gitleaks or TruffleHog on CI.
"""

from __future__ import annotations

import re
import subprocess
from dataclasses import dataclass
from pathlib import Path

SCANNED_SUFFIX_RE = re.compile(r"\.(py|ts|js|json|md|yml|yaml|env|toml|txt|cfg|ini)$", re.I)
IGNORED_PREFIXES = (".yarn/", "node_modules/", ".venv/")
ALLOWLIST = frozenset({".env.example"})

SECRET_PATTERNS: tuple[re.Pattern, ...] = (
    *(re.compile(rf"{name}=.+\S") for name in ("IDAM_SECRET", "S2S_SECRET", "COURTNAV_SECRET")),
    re.compile(r"AKIA[0-9A-Z]{16}"),  # AWS access key id
    re.compile(r"(\"|')?xuiwebapp(\"|')?\s*[:=]\s*[A-Za-z0-9_\-]{20,}"),
)


@dataclass
class SecretFinding:
    file: str
    match: str

    @property
    def redacted(self) -> str:
        return f"{self.match[:12]}***" if len(self.match) > 12 else "***"


def is_scannable(name: str) -> bool:
    if name.startswith(IGNORED_PREFIXES):
        return False
    return bool(SCANNED_SUFFIX_RE.search(name))


def list_tracked_files(root: Path) -> list[str]:
    """Relative paths from ``git ls-files`` worth scanning.

    Raises:
        subprocess.CalledProcessError: ``root`` is not inside a git work tree.
    """
    output = subprocess.run(
        ["git", "ls-files"],
        cwd=root,
        capture_output=True,
        text=True,
        check=True,
    ).stdout
    return [name for name in output.splitlines() if name and is_scannable(name)]


def scan_text(name: str, text: str) -> list[SecretFinding]:
    findings = []
    for pattern in SECRET_PATTERNS:
        match = pattern.search(text)
        if match:
            findings.append(SecretFinding(file=name, match=match.group(0)))
    return findings


def scan_files(files: list[str], root: Path) -> list[SecretFinding]:
    """First hit of each pattern per file; allow-listed and missing files are skipped."""
    findings: list[SecretFinding] = []
    for name in files:
        if name in ALLOWLIST:
            continue
        path = root / name
        if not path.is_file():
            continue
        findings.extend(scan_text(name, path.read_text(encoding="utf-8", errors="replace")))
    return findings
