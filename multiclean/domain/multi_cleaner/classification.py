"""Large-home classification from bed/bath counts and the configured thresholds"""

from ... import config
from ...shared.validators import to_float


def _thresholds() -> tuple[float, float]:
    # Read at call time so deployments and tests can override
    return config.LARGE_HOME_BEDS_THRESHOLD, config.LARGE_HOME_BATHS_THRESHOLD


def is_large_home(num_beds, num_baths) -> bool:
    beds_threshold, baths_threshold = _thresholds()
    return to_float(num_beds) >= beds_threshold or to_float(num_baths) >= baths_threshold


def is_edge_large_home(num_beds, num_baths) -> bool:
    """Large, but neither dimension is over its threshold"""
    beds_threshold, baths_threshold = _thresholds()
    return (
        is_large_home(num_beds, num_baths)
        and to_float(num_beds) <= beds_threshold
        and to_float(num_baths) <= baths_threshold
    )


def is_solo_allowed(num_beds, num_baths) -> bool:
    return not is_large_home(num_beds, num_baths) or is_edge_large_home(num_beds, num_baths)


def is_multi_cleaner_required(num_beds, num_baths) -> bool:
    return is_large_home(num_beds, num_baths) and not is_edge_large_home(num_beds, num_baths)


def classify_home(home) -> dict:
    beds = home.num_beds if home is not None else None
    baths = home.num_baths if home is not None else None
    return {
        "isLargeHome": is_large_home(beds, baths),
        "isEdgeLargeHome": is_edge_large_home(beds, baths),
        "soloAllowed": is_solo_allowed(beds, baths),
        "multiCleanerRequired": is_multi_cleaner_required(beds, baths),
    }
