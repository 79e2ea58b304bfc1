DELIVERY_STATES = ["Pending", "Started", "Completed", "Failed"]
ACTIVE_DELIVERY_STATES = ["Pending", "Started"]

TRANSITIONS = {
    ("Pending", "Started"):   {"roles": ["ngo"]},
    ("Pending", "Failed"):    {"roles": ["ngo", "donor"]},
    ("Started", "Completed"): {"roles": ["ngo"]},
    ("Started", "Failed"):    {"roles": ["ngo", "donor"]},
}

FOOD_ITEM_STATES = ["available", "claimed", "reserved", "delivered"]

def can_transition(src: str, dst: str, role: str | None = None) -> bool:
    rule = TRANSITIONS.get((src, dst))
    if not rule:
        return False
    return role is None or role in rule["roles"]
