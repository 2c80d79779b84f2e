# Overview: Lookups over the capability definitions.

from .definitions import PERMISSION_DEFINITIONS

_BY_CODE = {code: (name, description, category) for code, name, description, category in PERMISSION_DEFINITIONS}


def is_known_capability(code) -> bool:
    return code in _BY_CODE


def capabilities_in_category(category) -> list[str]:
    """Capability codes of one category, in definition order."""
    return [code for code, (_, _, cat) in _BY_CODE.items() if cat == category]


def describe_capability(code):
    """Definition as a dict, or None for an unknown code."""
    if code not in _BY_CODE:
        return None
    name, description, category = _BY_CODE[code]
    return {"code": code, "name": name, "description": description, "category": category}
