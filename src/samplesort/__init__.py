"""SampleSort package

Core pipeline, services and command-line interface for organising audio
sample libraries: keyword classification, content-hash deduplication,
archive expansion and tempo/key folder placement. Public classes are
re-exported here for convenience.
"""

from .config_service import ConfigService  # noqa: F401
from .engine import SampleSortEngine  # noqa: F401
from .run_log import CancelToken, RunLog  # noqa: F401
from .settings import ConfigurationError, OrganizerSettings  # noqa: F401
from .tempo_key import TempoKeyPass, place_key, place_tempo  # noqa: F401

__all__ = [
    "SampleSortEngine",
    "ConfigService",
    "CancelToken",
    "RunLog",
    "ConfigurationError",
    "OrganizerSettings",
    "TempoKeyPass",
    "place_tempo",
    "place_key",
]
