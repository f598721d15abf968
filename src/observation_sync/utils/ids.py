"""
ids.py - Placeholder ID generation.

Records created while offline need an ID before the Remote Store
can assign one. Placeholders are time-ordered:

    temp-<unix millis>-<8 random hex chars>
"""

import os
import time

from observation_sync.config import PLACEHOLDER_PREFIX


def generate_placeholder_id() -> str:
    """Generate a locally unique placeholder ID."""
    t_ms = int(time.time() * 1000)
    return f"{PLACEHOLDER_PREFIX}{t_ms}-{os.urandom(4).hex()}"


def is_placeholder_id(record_id: str | None) -> bool:
    """True if the ID was synthesized locally and never confirmed."""
    return bool(record_id) and record_id.startswith(PLACEHOLDER_PREFIX)
