"""Content hashing for run identification.

Allocation and forecasting are deterministic, so a hash of the inputs
identifies a run's outputs.
"""

import hashlib
import json
from dataclasses import asdict, is_dataclass

from cohort_demand.models import Assumptions, TreatmentNode


def _to_plain(obj: object) -> object:
    if is_dataclass(obj) and not isinstance(obj, type):
        return asdict(obj)
    if isinstance(obj, (list, tuple)):
        return [_to_plain(item) for item in obj]
    return obj


def hash_object(obj: object) -> str:
    """SHA-256 of the sorted-key JSON form of ``obj`` (dataclasses allowed)."""
    payload = json.dumps(_to_plain(obj), sort_keys=True, default=str)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def short_hash(text: str, length: int = 8) -> str:
    """First ``length`` hex characters of the SHA-256 of ``text``."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:length]


def generate_run_id(taxonomy: list[TreatmentNode], assumptions: Assumptions) -> str:
    """Stable 12-character identifier for a taxonomy + assumptions pair."""
    combined = json.dumps(
        {
            "assumptions_hash": hash_object(assumptions),
            "taxonomy_hash": hash_object(taxonomy),
        },
        sort_keys=True,
    )
    return short_hash(combined, 12)
