from .checkin import detect_checkin_transition, perform_check_in, should_check_in, should_check_models
from .site_checker import CheckResult, SiteChecker
from .snapshot import EMPTY_HASH, compute_diff, compute_hash

__all__ = [
    "CheckResult",
    "EMPTY_HASH",
    "SiteChecker",
    "compute_diff",
    "compute_hash",
    "detect_checkin_transition",
    "perform_check_in",
    "should_check_in",
    "should_check_models",
]
