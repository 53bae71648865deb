"""
Path addressing for the collected-data tree.

Keys look like `user.base_name.first`, `property[0].address.line1` or, as
templates in a required-key list, `property[].address.line1`. A key is
parsed once into a tuple of tokens (field names and integer indices) and
every read/write walks those tokens instead of splitting strings at each
call site.

Two suffix conventions are layered on top of plain keys:
- a trailing `?` marks a flag question (a gate such as `user.is_married?`
  or an `<entity>.add_another?` prompt);
- an empty `[]` marks an array slot not yet bound to an index.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Optional, Union

FLAG_SUFFIX = "?"
ADD_ANOTHER = "add_another"
OPEN_INDEX = "[]"

_SEGMENT = re.compile(r"^(\w+)((?:\[\d*\])*)$")
_INDEX = re.compile(r"\[(\d*)\]")
_CONCRETE_INDEX = re.compile(r"\[\d+\]")


class OpenIndex:
    """Token for an unbound `[]` slot."""

    def __repr__(self) -> str:
        return "OpenIndex()"

    def __eq__(self, other: object) -> bool:
        return isinstance(other, OpenIndex)

    def __hash__(self) -> int:
        return hash(OPEN_INDEX)


Token = Union[str, int, OpenIndex]


@dataclass(frozen=True)
class KeyPath:
    """A parsed key: field-name tokens (str) and array-index tokens (int)."""

    tokens: tuple[Token, ...]

    @classmethod
    def parse(cls, key: str) -> "KeyPath":
        """
        Parse a dotted/indexed key into tokens.

        Raises:
            ValueError: If the key is empty or a segment is malformed.
        """
        if not key or not key.strip():
            raise ValueError("key must be a non-empty string")

        tokens: list[Token] = []
        for segment in key.split("."):
            match = _SEGMENT.match(segment)
            if not match:
                raise ValueError(f"malformed key segment '{segment}' in '{key}'")
            tokens.append(match.group(1))
            for index in _INDEX.findall(match.group(2)):
                tokens.append(int(index) if index else OpenIndex())
        return cls(tuple(tokens))

    @property
    def is_concrete(self) -> bool:
        return not any(isinstance(t, OpenIndex) for t in self.tokens)

    def __str__(self) -> str:
        parts: list[str] = []
        for token in self.tokens:
            if isinstance(token, str):
                parts.append(token if not parts else f".{token}")
            elif isinstance(token, OpenIndex):
                parts.append(OPEN_INDEX)
            else:
                parts.append(f"[{token}]")
        return "".join(parts)


_MISSING = object()


def get_path(tree: Any, key: Union[str, KeyPath], default: Any = None) -> Any:
    """Read the value at `key`, or `default` when any step is absent."""
    path = key if isinstance(key, KeyPath) else KeyPath.parse(key)
    if not path.is_concrete:
        raise ValueError(f"cannot read unbound array slot in '{path}'")

    node = tree
    for token in path.tokens:
        if isinstance(token, str):
            if not isinstance(node, dict):
                return default
            node = node.get(token, _MISSING)
        else:
            if not isinstance(node, list) or token >= len(node):
                return default
            node = node[token]
        if node is _MISSING:
            return default
    return node


def set_path(tree: dict, key: Union[str, KeyPath], value: Any) -> None:
    """
    Write `value` at `key`, materializing intermediate mappings and list
    slots. Lists are padded with None up to the target index only.
    """
    path = key if isinstance(key, KeyPath) else KeyPath.parse(key)
    if not path.is_concrete:
        raise ValueError(f"cannot write unbound array slot in '{path}'")

    node: Any = tree
    tokens = path.tokens
    for position, token in enumerate(tokens):
        last = position == len(tokens) - 1
        next_token = None if last else tokens[position + 1]

        if isinstance(token, str):
            if not isinstance(node, dict):
                raise ValueError(f"'{path}' crosses a non-mapping value")
            if last:
                node[token] = value
                return
            child = node.get(token)
            if not _container_fits(child, next_token):
                child = [] if isinstance(next_token, int) else {}
                node[token] = child
            node = child
        else:
            if not isinstance(node, list):
                raise ValueError(f"'{path}' indexes a non-list value")
            while len(node) <= token:
                node.append(None)
            if last:
                node[token] = value
                return
            child = node[token]
            if not _container_fits(child, next_token):
                child = [] if isinstance(next_token, int) else {}
                node[token] = child
            node = child


def _container_fits(child: Any, next_token: Optional[Token]) -> bool:
    if isinstance(next_token, int):
        return isinstance(child, list)
    return isinstance(child, dict)


def has_value(value: Any) -> bool:
    """True for anything other than None, blank strings and empty collections."""
    if value is None:
        return False
    if isinstance(value, str) and not value.strip():
        return False
    if isinstance(value, (list, tuple, dict)) and len(value) == 0:
        return False
    return True


# ── Key helpers ─────────────────────────────────────────────────


def is_flag_key(key: str) -> bool:
    return key.endswith(FLAG_SUFFIX)


def strip_flag(key: str) -> str:
    return key[:-len(FLAG_SUFFIX)] if is_flag_key(key) else key


def flag_key(base_key: str) -> str:
    return f"{base_key}{FLAG_SUFFIX}"


def add_another_key(entity: str) -> str:
    return flag_key(f"{entity}.{ADD_ANOTHER}")


def is_add_another_key(key: str) -> bool:
    return strip_flag(key).endswith(f".{ADD_ANOTHER}") and is_flag_key(key)


def entity_of(key: str) -> str:
    """First segment of a key, without any index: `property[0].x` -> `property`."""
    first = strip_flag(key).split(".", 1)[0]
    return first.split("[", 1)[0]


def is_array_template(key: str) -> bool:
    return OPEN_INDEX in key


def concretize(template: str, index: int) -> str:
    """Bind the first `[]` slot of a key template to `index`."""
    return template.replace(OPEN_INDEX, f"[{index}]", 1)


def normalize_indices(key: str) -> str:
    """Turn concrete indices back into open slots: `p[2].x` -> `p[].x`."""
    return _CONCRETE_INDEX.sub(OPEN_INDEX, key)


def instance_path(entity: str, index: int) -> str:
    return f"{entity}[{index}]"
