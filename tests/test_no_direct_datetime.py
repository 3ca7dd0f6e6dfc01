from __future__ import annotations

import re
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
PACKAGE_DIR = ROOT / "tutordesk"
CLOCK_MODULE = PACKAGE_DIR / "core" / "time_provider.py"

# Wall-clock reads go through TimeProvider so tests can pin "now".
PATTERNS = (
    r"\bdatetime\.now\(",
    r"\bdatetime\.utcnow\(",
    r"\bdate\.today\(",
    r"\bdatetime\.today\(",
)
COMPILED = [re.compile(pattern) for pattern in PATTERNS]


def test_scheduling_code_reads_the_clock_through_time_provider() -> None:
    violations: list[tuple[str, int, str]] = []
    for file_path in PACKAGE_DIR.rglob("*.py"):
        if file_path == CLOCK_MODULE:
            continue
        for idx, line in enumerate(file_path.read_text(encoding="utf-8").splitlines(), start=1):
            if any(regex.search(line) for regex in COMPILED):
                violations.append((str(file_path.relative_to(ROOT)), idx, line.strip()))

    assert not violations, "Direct datetime usage found:\n" + "\n".join(
        f"{path}:{line_no}: {line}" for path, line_no, line in violations
    )
