"""
Room splitting for multi-cleaner jobs
Turns a home's bed/bath configuration into room units and packs them into
balanced per-cleaner groups. Pure functions, no database access.
"""

import math
from typing import Any, Optional

from ...shared.validators import to_float

# Base effort per room type in minutes
ROOM_EFFORT_ESTIMATES = {
    "bedroom": 30,
    "bathroom": 25,
    "kitchen": 40,
    "living_room": 25,
    "dining_room": 20,
    "other": 20,
}

# Square footage that maps to the base effort
BASELINE_ROOM_SQFT = 150
MIN_SQFT_MULTIPLIER = 0.5
MAX_SQFT_MULTIPLIER = 2.0

# Dining room is only listed for homes with this many bedrooms
DINING_ROOM_MIN_BEDROOMS = 3

ROOM_CHECKLISTS = {
    "bedroom": [
        "Dust all surfaces and furniture",
        "Make bed / change linens if provided",
        "Vacuum or mop floors",
        "Empty trash",
    ],
    "bathroom": [
        "Clean and disinfect toilet",
        "Scrub shower and tub",
        "Clean sink, counters and mirror",
        "Mop floor",
        "Restock towels if provided",
    ],
    "kitchen": [
        "Wipe counters and backsplash",
        "Clean sink and faucet",
        "Wipe appliance exteriors",
        "Clean stovetop and microwave",
        "Mop floor",
        "Empty trash",
    ],
    "living_room": [
        "Dust surfaces and electronics",
        "Straighten cushions and throws",
        "Vacuum rugs and floors",
    ],
    "dining_room": [
        "Wipe table and chairs",
        "Dust light fixtures and shelves",
        "Vacuum or mop floor",
    ],
    "other": [
        "Dust surfaces",
        "Vacuum or mop floor",
    ],
}


def _home_value(home: Any, attr: str, key: str):
    """Read a field from a Home row or a plain dict"""
    if home is None:
        return None
    if isinstance(home, dict):
        return home.get(attr, home.get(key))
    return getattr(home, attr, None)


def calculate_room_effort(room_type: str, square_feet: Optional[float] = None) -> int:
    """Estimated minutes for one room, scaled by its size when known"""
    base = ROOM_EFFORT_ESTIMATES.get(room_type, ROOM_EFFORT_ESTIMATES["other"])
    if not square_feet:
        return base

    multiplier = min(MAX_SQFT_MULTIPLIER, max(MIN_SQFT_MULTIPLIER, square_feet / BASELINE_ROOM_SQFT))
    return round(base * multiplier)


def generate_room_list_from_home(home) -> list[dict]:
    """
    Build the deterministic room list for a home.

    One row per bedroom (the first is the master), one per full bathroom
    (the first is the master), a half bath when the fractional part is at
    least .5, always a kitchen and living room, and a dining room for
    homes with three or more bedrooms.
    """
    beds = int(to_float(_home_value(home, "num_beds", "numBeds")))
    baths = to_float(_home_value(home, "num_baths", "numBaths"))
    full_baths = int(math.floor(baths))
    has_half_bath = (baths % 1) >= 0.5

    rooms = []

    for i in range(1, beds + 1):
        rooms.append(
            {
                "room_type": "bedroom",
                "room_number": i,
                "room_label": "Master Bedroom" if i == 1 else f"Bedroom {i}",
                "estimated_minutes": calculate_room_effort("bedroom"),
            }
        )

    for i in range(1, full_baths + 1):
        rooms.append(
            {
                "room_type": "bathroom",
                "room_number": i,
                "room_label": "Master Bathroom" if i == 1 else f"Bathroom {i}",
                "estimated_minutes": calculate_room_effort("bathroom"),
            }
        )

    if has_half_bath:
        # Python's round() is banker's rounding; half baths round up like the rest of the UI
        rooms.append(
            {
                "room_type": "bathroom",
                "room_number": full_baths + 1,
                "room_label": "Half Bath",
                "estimated_minutes": int(math.floor(ROOM_EFFORT_ESTIMATES["bathroom"] * 0.5 + 0.5)),
            }
        )

    rooms.append(
        {
            "room_type": "kitchen",
            "room_number": 1,
            "room_label": "Kitchen",
            "estimated_minutes": calculate_room_effort("kitchen"),
        }
    )
    rooms.append(
        {
            "room_type": "living_room",
            "room_number": 1,
            "room_label": "Living Room",
            "estimated_minutes": calculate_room_effort("living_room"),
        }
    )

    if beds >= DINING_ROOM_MIN_BEDROOMS:
        rooms.append(
            {
                "room_type": "dining_room",
                "room_number": 1,
                "room_label": "Dining Room",
                "estimated_minutes": calculate_room_effort("dining_room"),
            }
        )

    return rooms


def pack_rooms(rooms: list[dict], group_count: int, initial_loads: Optional[list[int]] = None) -> list[list[dict]]:
    """
    Longest-processing-time-first packing: heaviest room goes to the group
    with the lowest running total. Ties go to the lowest group index.
    """
    if group_count <= 1:
        return [list(rooms)]

    groups: list[list[dict]] = [[] for _ in range(group_count)]
    loads = list(initial_loads) if initial_loads else [0] * group_count

    # sorted() is stable, so equal-effort rooms keep their list order
    for room in sorted(rooms, key=lambda r: r["estimated_minutes"], reverse=True):
        target = min(range(group_count), key=lambda i: loads[i])
        groups[target].append(room)
        loads[target] += room["estimated_minutes"]

    return groups


def split_rooms_proportionally(home, cleaner_count: int) -> list[list[dict]]:
    """Split a home's rooms into ``cleaner_count`` groups of roughly equal effort"""
    rooms = generate_room_list_from_home(home)
    return pack_rooms(rooms, cleaner_count)


def group_effort(group: list[dict]) -> int:
    return sum(r["estimated_minutes"] for r in group)


def calculate_recommended_cleaners(home) -> int:
    """1 cleaner per 3-4 rooms, capped at 4"""
    beds = to_float(_home_value(home, "num_beds", "numBeds"))
    baths = to_float(_home_value(home, "num_baths", "numBaths"))
    room_count = beds + math.ceil(baths)

    if room_count <= 4:
        return 1
    if room_count <= 7:
        return 2
    if room_count <= 10:
        return 3
    return min(4, math.ceil(room_count / 3))


def estimate_job_duration(home, cleaner_count: int = 1) -> int:
    """Wall-clock minutes for the job with ``cleaner_count`` cleaners working in parallel"""
    beds = to_float(_home_value(home, "num_beds", "numBeds")) or 1
    baths = to_float(_home_value(home, "num_baths", "numBaths")) or 1
    cleaner_count = max(1, cleaner_count or 1)

    base_minutes = 30 + beds * 30 + baths * 20
    # 15% overlap overhead when several cleaners share a home
    efficiency_factor = 0.85 if cleaner_count > 1 else 1
    return math.ceil((base_minutes / cleaner_count) / efficiency_factor)


def checklist_for_room(room_type: str) -> list[str]:
    return list(ROOM_CHECKLISTS.get(room_type, ROOM_CHECKLISTS["other"]))
