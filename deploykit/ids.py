"""
Run IDs: ``r-YYYYMMDD-hhmmss-xxxx``.

The timestamp prefix makes IDs sort in start order, which is what
``deploykit status latest`` relies on. The suffix keeps two runs started in
the same second apart.
"""

import re
import secrets
import string
from datetime import datetime
from typing import Optional

RUN_ID_PATTERN = re.compile(r"^r-\d{8}-\d{6}-[a-z0-9]{4}$")

_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits


def new_run_id(now: Optional[datetime] = None) -> str:
    now = now or datetime.now()
    suffix = "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(4))
    return f"r-{now:%Y%m%d-%H%M%S}-{suffix}"


def is_valid_run_id(run_id: str) -> bool:
    """Check the shape of a run ID; run directories are only created for valid ones."""
    return bool(RUN_ID_PATTERN.match(run_id))
