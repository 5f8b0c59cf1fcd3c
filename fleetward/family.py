"""Instance family extraction.

The cloud is inferred from the lexical shape of the instance type:

- ``m5.xlarge`` (family.size) -> ``m5``
- ``n2-standard-4`` (family-shape-size) -> ``n2-standard``
- ``e2-medium`` (family-size) -> ``e2``
- ``Standard_D4s_v3`` (underscore grammar) -> ``Standard_D_v3``
"""

from __future__ import annotations

from fleetward.errors import UnrecognizedFormatError

UNDERSCORE_PREFIX = "Standard"


def extract_family(instance_type: str) -> str:
    """Return the hardware family of an instance type.

    Raises
    ------
    UnrecognizedFormatError
        If the input is empty or no family can be derived from it.
    """
    if not instance_type:
        raise UnrecognizedFormatError(instance_type)

    if "." in instance_type:
        family = instance_type.split(".", 1)[0]
    elif "-" in instance_type:
        parts = instance_type.split("-")
        family = "-".join(parts[:-1]) if len(parts) >= 3 else parts[0]
    elif instance_type.startswith(f"{UNDERSCORE_PREFIX}_"):
        family = _underscore_family(instance_type)
    else:
        family = instance_type

    if not family:
        raise UnrecognizedFormatError(instance_type)
    return family


def _underscore_family(vm_size: str) -> str:
    parts = vm_size.split("_")
    letters = ""
    for ch in parts[1]:
        if not ch.isascii() or not ch.isalpha():
            break
        if letters and not ch.isupper():
            break
        letters += ch
    if not letters:
        return ""

    family = f"{parts[0]}_{letters}"
    for part in parts[2:]:
        if part.startswith("v"):
            family += f"_{part}"
    return family


def same_family(family_a: str, family_b: str) -> bool:
    """Case-insensitive comparison of two already-extracted families."""
    return family_a.casefold() == family_b.casefold()


def is_same_family(type_a: str, type_b: str) -> bool:
    """Check whether two instance types belong to the same family."""
    return same_family(extract_family(type_a), extract_family(type_b))


def try_extract_family(instance_type: str) -> str:
    """Like :func:`extract_family`, but returns ``""`` for unparseable input."""
    try:
        return extract_family(instance_type)
    except UnrecognizedFormatError:
        return ""


__all__ = [
    "extract_family",
    "is_same_family",
    "same_family",
    "try_extract_family",
]
