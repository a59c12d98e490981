"""
Path Assembler - Builds nested payload trees from dotted target paths

Supports:
- Dotted paths ("customer.address.city"), at most 5 segments deep
- Array segments ("items[0].sku"), grown with empty-object placeholders
- Lookup, deep merge and removal using the same path rules
"""

import copy
import logging
import re
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

MAX_DEPTH = 5
PATH_SEPARATOR = "."

ARRAY_SEGMENT = re.compile(r"^(?P<name>[^\[\]]+)\[(?P<index>\d+)\]$")

Segment = Tuple[str, Optional[int]]


class PathConflict(Exception):
    """An existing node has the wrong shape for the requested path."""


class PathAssembler:
    """Assembles, queries and merges payload trees"""

    def __init__(self, max_depth: int = MAX_DEPTH):
        self.max_depth = max_depth

    # ------------------------------------------------------------------
    # Path parsing
    # ------------------------------------------------------------------

    def split_path(self, path: str) -> List[Segment]:
        """
        Split a dotted path into (key, index) segments.

        ``index`` is None for plain object keys. Paths deeper than
        ``max_depth`` are truncated to their first ``max_depth`` segments.

        Raises:
            ValueError: empty path or empty segment
        """
        if not path or not path.strip():
            raise ValueError("empty path")

        parts = [part.strip() for part in path.split(PATH_SEPARATOR)]
        if len(parts) > self.max_depth:
            logger.warning(
                f"Path '{path}' exceeds maximum nesting depth of {self.max_depth}. Truncating."
            )
            parts = parts[: self.max_depth]

        segments = []
        for part in parts:
            if not part:
                raise ValueError(f"empty segment in path '{path}'")
            match = ARRAY_SEGMENT.match(part)
            if match:
                segments.append((match.group("name"), int(match.group("index"))))
            else:
                segments.append((part, None))
        return segments

    # ------------------------------------------------------------------
    # Assembly
    # ------------------------------------------------------------------

    def assemble(self, path_values: Dict[str, Any]) -> Dict[str, Any]:
        """
        Build a tree from a flat {dotted_path: value} map.

        A path that cannot be placed (empty, or conflicting with a node
        another path already created) is skipped with a warning; the
        remaining paths are unaffected.
        """
        root: Dict[str, Any] = {}

        for path, value in path_values.items():
            try:
                self.set_value_at_path(root, path, value)
            except ValueError as e:
                logger.warning(f"Skipping path '{path}': {e}")

        return root

    def set_value_at_path(self, root: Dict[str, Any], path: str, value: Any) -> bool:
        """
        Set ``value`` at ``path`` inside ``root``, creating intermediate nodes.

        Returns:
            True if the value was placed, False on a path conflict

        Raises:
            ValueError: malformed path
        """
        segments = self.split_path(path)

        try:
            parent = root
            for key, index in segments[:-1]:
                parent = self._descend(parent, key, index)
        except PathConflict as e:
            logger.warning(f"Path conflict at '{path}': {e}")
            return False

        key, index = segments[-1]
        if index is None:
            parent[key] = value
            return True

        items = parent.setdefault(key, [])
        if not isinstance(items, list):
            logger.warning(f"Path conflict at '{path}': '{key}' is not an array")
            return False
        while len(items) <= index:
            items.append({})
        items[index] = value
        return True

    @staticmethod
    def _descend(node: Dict[str, Any], key: str, index: Optional[int]) -> Dict[str, Any]:
        """Return the object child at (key, index), creating it when absent."""
        if index is None:
            child = node.setdefault(key, {})
            if not isinstance(child, dict):
                raise PathConflict(f"existing node '{key}' is not an object")
            return child

        items = node.setdefault(key, [])
        if not isinstance(items, list):
            raise PathConflict(f"existing node '{key}' is not an array")
        while len(items) <= index:
            items.append({})
        child = items[index]
        if not isinstance(child, dict):
            raise PathConflict(f"element {key}[{index}] is not an object")
        return child

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, tree: Dict[str, Any], path: str) -> Any:
        """Value at ``path``, or None if any segment is absent or not an object"""
        try:
            segments = self.split_path(path)
        except ValueError:
            return None

        current: Any = tree
        for key, index in segments:
            if not isinstance(current, dict) or key not in current:
                return None
            current = current[key]
            if index is not None:
                if not isinstance(current, list) or index >= len(current):
                    return None
                current = current[index]
        return current

    def remove(self, tree: Dict[str, Any], path: str) -> bool:
        """Remove the node at ``path``. Returns whether anything was removed."""
        try:
            segments = self.split_path(path)
        except ValueError:
            return False

        parent: Any = tree
        for key, index in segments[:-1]:
            if not isinstance(parent, dict) or key not in parent:
                return False
            parent = parent[key]
            if index is not None:
                if not isinstance(parent, list) or index >= len(parent):
                    return False
                parent = parent[index]

        if not isinstance(parent, dict):
            return False

        key, index = segments[-1]
        if key not in parent:
            return False
        if index is None:
            del parent[key]
            return True

        items = parent[key]
        if not isinstance(items, list) or index >= len(items):
            return False
        del items[index]
        return True

    # ------------------------------------------------------------------
    # Merge
    # ------------------------------------------------------------------

    def merge(self, base: Dict[str, Any], overlay: Dict[str, Any]) -> Dict[str, Any]:
        """
        Deep-merge ``overlay`` onto a copy of ``base``.

        Objects present on both sides are merged recursively; for anything
        else the overlay value wins. Neither input is modified.
        """
        result = copy.deepcopy(base)

        for key, overlay_value in overlay.items():
            current = result.get(key)
            if isinstance(current, dict) and isinstance(overlay_value, dict):
                result[key] = self.merge(current, overlay_value)
            else:
                result[key] = copy.deepcopy(overlay_value)

        return result
