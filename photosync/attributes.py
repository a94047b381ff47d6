from typing import Any, Dict, Iterator, List, Optional, Tuple

from photosync.timestamp import Timestamp

# The reserved group holding a resolved value that did not come from one specific namespace.
PREFERRED = ""

# Order in which metadata namespaces are preferred when no resolved value exists.
GROUP_PREFERENCE = ["XMP", "EXIF", "QuickTime", "Keys", "UserData", "RIFF", "YAML", "Composite", "File"]


def _copy_value(value: Any) -> Any:
    if isinstance(value, Timestamp):
        return value.clone()
    if isinstance(value, list):
        return list(value)
    return value


class AttributeSet:
    """
    Tag values of one file, grouped by metadata namespace (exiftool family 0 group).

    `get` returns the preferred value of a tag; `get_from` reads one specific group.
    """

    def __init__(self, values: Optional[Dict[str, Dict[str, Any]]] = None):
        self._values: Dict[str, Dict[str, Any]] = {}
        for tag, groups in (values or {}).items():
            for group, value in groups.items():
                self.set(tag, value, group)

    def set(self, tag: str, value: Any, group: str = PREFERRED):
        """Sets a value; setting None removes the tag from that group."""
        if value is None:
            self.delete(tag, group)
            return
        self._values.setdefault(tag, {})[group] = value

    def delete(self, tag: str, group: Optional[str] = None):
        """Removes a tag from one group, or from all groups when `group` is None."""
        groups = self._values.get(tag)
        if groups is None:
            return
        if group is None:
            groups.clear()
        else:
            groups.pop(group, None)
        if not groups:
            del self._values[tag]

    def preferred_group(self, tag: str) -> Optional[str]:
        groups = self._values.get(tag)
        if not groups:
            return None
        if PREFERRED in groups:
            return PREFERRED
        for group in GROUP_PREFERENCE:
            if group in groups:
                return group
        return sorted(groups)[0]

    def get(self, tag: str) -> Any:
        """Returns the preferred value of a tag, or None."""
        group = self.preferred_group(tag)
        if group is None:
            return None
        return self._values[tag][group]

    def get_from(self, group: str, tag: str) -> Any:
        return self._values.get(tag, {}).get(group)

    def get_context(self, tag: str) -> Tuple[Optional[str], Any]:
        """Returns (group, value) of the preferred value."""
        group = self.preferred_group(tag)
        return group, (self._values[tag][group] if group is not None else None)

    def groups(self, tag: str) -> List[str]:
        return sorted(self._values.get(tag, {}))

    def tags(self) -> List[str]:
        return sorted(self._values)

    def items(self) -> Iterator[Tuple[str, str, Any]]:
        """Yields (group, tag, value) for every stored value."""
        for tag in self.tags():
            for group in self.groups(tag):
                yield group, tag, self._values[tag][group]

    def has(self, tag: str) -> bool:
        return tag in self._values

    def clone(self) -> "AttributeSet":
        copy = AttributeSet()
        for group, tag, value in self.items():
            copy.set(tag, _copy_value(value), group)
        return copy

    def as_flat_dict(self) -> Dict[str, Any]:
        """Preferred values keyed by tag, with timestamps as strings (for sidecars and logs)."""
        flat = {}
        for tag in self.tags():
            value = self.get(tag)
            flat[tag] = str(value) if isinstance(value, Timestamp) else value
        return flat

    def stringify(self, prefix: str = "") -> str:
        lines = []
        for group, tag, value in self.items():
            name = f"{group}:{tag}" if group else tag
            lines.append(f"{prefix}{name} = {value}")
        return "\n".join(lines)

    def __contains__(self, tag: str) -> bool:
        return self.has(tag)

    def __repr__(self) -> str:
        return f"AttributeSet({self.as_flat_dict()})"
