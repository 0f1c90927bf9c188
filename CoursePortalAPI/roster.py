"""
Roster text parsing.

TAs paste the roster as one student per line: class number first, ERP last
and the name in between, separated by whitespace.
"""

import re
from typing import Dict, List, Tuple

_NAME_SEPARATORS = re.compile(r"[,/_-]")


def normalize_name(name: str) -> str:
    """
    Title-case a student name and turn stray separators into spaces.

    "Aamina,Ghias" becomes "Aamina Ghias" and "ABDUL RAFAY" becomes "Abdul Rafay".
    """
    if not name:
        return ""
    words = _NAME_SEPARATORS.sub(" ", name).split()
    return " ".join(word[:1].upper() + word[1:].lower() for word in words)


def parse_roster_text(text: str) -> Tuple[List[Dict[str, str]], List[str]]:
    """
    Parse pasted roster lines.

    Args:
        text (str): Raw roster text.

    Returns:
        tuple: (students, skipped) where students are dicts with class_no,
        student_name and erp, and skipped holds the lines with fewer than
        three tokens.
    """
    students = []
    skipped = []
    for line in (text or "").splitlines():
        if not line.strip():
            continue
        parts = line.split()
        if len(parts) < 3:
            skipped.append(line.strip())
            continue
        students.append(
            {
                "class_no": parts[0],
                "student_name": normalize_name(" ".join(parts[1:-1])),
                "erp": parts[-1],
            }
        )
    return students, skipped
