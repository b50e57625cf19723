"""Via Rail train number to route name tables."""

from typing import List, Tuple, Union

# (first number, last number, route name), inclusive ranges
VIA_ROUTES: List[Tuple[int, int, str]] = [
    (1, 2, "The Canadian"),
    (14, 15, "Ocean"),
    (20, 39, "Montréal – Québec City"),
    (40, 59, "Ottawa – Toronto"),
    (60, 69, "Montréal – Toronto"),
    (70, 79, "Toronto – Windsor"),
    (80, 89, "Toronto – Sarnia"),
    (97, 98, "Maple Leaf"),
    (185, 186, "Sudbury – White River"),
    (190, 191, "Sudbury – White River"),
    (600, 602, "Montréal – Jonquière"),
    (603, 604, "Montréal – Senneterre"),
    (605, 606, "Montréal – Jonquière"),
    (620, 625, "Montréal – Ottawa"),
    (632, 651, "Montréal – Ottawa"),
    (668, 669, "Montréal – Ottawa"),
    (690, 693, "Winnipeg – Churchill"),
]


def route_name(number: Union[int, str]) -> str:
    """
    Get the route name for a Via Rail train number.

    Unknown or non-numeric numbers fall back to "VIA Rail <number>".
    """
    try:
        value = int(str(number).strip())
    except ValueError:
        return f"VIA Rail {number}"

    for first, last, name in VIA_ROUTES:
        if first <= value <= last:
            return name
    return f"VIA Rail {number}"
