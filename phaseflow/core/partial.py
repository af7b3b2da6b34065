"""Sentinel for typed partial updates: a field left ``UNSET`` is not changed."""


class Unset:
    def __repr__(self):
        return "UNSET"

    def __bool__(self):
        return False


UNSET = Unset()


def supplied(update) -> dict:
    """Return ``{field: value}`` for every dataclass field that is not ``UNSET``."""
    from dataclasses import fields

    return {
        f.name: getattr(update, f.name)
        for f in fields(update)
        if getattr(update, f.name) is not UNSET
    }
