"""Configuration values read from a YAML document before the other sources.

Keys match field names; a field's ``yaml`` metadata entry renames it
(``"c"``), hides it (``"-"``) or merges a nested dataclass into its parent
(``",inline"``). Fields set here keep their values when defaults are applied.
"""

import dataclasses
import inspect
import types
import typing
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

import yaml

from .errors import ConfError, InvalidStructError
from .fields import Args, convert, parse_duration

YAML_KEY = "yaml"

_CUSTOM_METHODS = ("set", "unmarshal_text", "unmarshal_binary")

_SIMPLE_TYPES = {
    "str": str,
    "int": int,
    "float": float,
    "bool": bool,
    "bytes": bytes,
    "list": list,
    "dict": dict,
    "timedelta": timedelta,
    "Any": typing.Any,
    "Args": Args,
}


@dataclass(frozen=True)
class YAMLSource:
    """A YAML document to unmarshal into the configuration."""

    data: bytes | str = b""

    def process(self, prefix, cfg):
        """Copy the document's values into the dataclass instance ``cfg``."""
        if isinstance(cfg, type) or not dataclasses.is_dataclass(cfg):
            raise InvalidStructError()
        if not self.data:
            return
        try:
            document = yaml.safe_load(self.data)
            if document is None:
                return
            if not isinstance(document, dict):
                raise ValueError(f"cannot unmarshal {document!r} into {type(cfg).__name__}")
            _apply(cfg, document)
        except (yaml.YAMLError, ValueError, TypeError, ConfError) as exc:
            raise ConfError(f"unmarshal yaml: {exc}") from exc


def with_data(data):
    """A source holding the given YAML document."""
    return YAMLSource(data)


def with_reader(reader):
    """A source holding everything read from ``reader``; empty if reading fails."""
    try:
        data = reader.read()
    except (OSError, ValueError):
        return YAMLSource()
    return with_data(data)


def _strip_optional(type_):
    if typing.get_origin(type_) in (typing.Union, types.UnionType):
        members = typing.get_args(type_)
        others = [member for member in members if member is not type(None)]
        if len(members) == 2 and len(others) == 1:
            return others[0]
    return type_


def _has_custom(type_):
    return any(callable(getattr(type_, name, None)) for name in _CUSTOM_METHODS)


def _is_struct(type_):
    return (
        typing.get_origin(type_) is None
        and isinstance(type_, type)
        and dataclasses.is_dataclass(type_)
        and not _has_custom(type_)
    )


def _resolve_name(cls, name):
    name = name.strip()
    if name in _SIMPLE_TYPES:
        return _SIMPLE_TYPES[name]
    module = inspect.getmodule(cls)
    namespace = vars(module) if module is not None else {}
    return namespace.get(name, name)


def _field_type(cls, dfield):
    type_ = dfield.type
    if not isinstance(type_, str):
        return type_
    parts = [part.strip() for part in type_.split("|")]
    if len(parts) == 2 and "None" in parts:
        other = parts[0] if parts[1] == "None" else parts[1]
        resolved = _resolve_name(cls, other)
        if isinstance(resolved, str):
            return type_
        return Optional[resolved]
    return _resolve_name(cls, type_)


def _yaml_key(dfield):
    spec = dfield.metadata.get(YAML_KEY, "")
    name, _, flags = spec.partition(",")
    return name or dfield.name, "inline" in flags.split(",")


def _ensure(obj, dfield, type_):
    current = getattr(obj, dfield.name)
    if current is None:
        current = type_()
        setattr(obj, dfield.name, current)
    return current


def _apply(obj, mapping):
    owner_type = type(obj)
    for dfield in dataclasses.fields(obj):
        if dfield.name.startswith("_"):
            continue
        key, inline = _yaml_key(dfield)
        if key == "-":
            continue
        type_ = _field_type(owner_type, dfield)
        inner = _strip_optional(type_)

        if _is_struct(inner):
            if inline:
                _apply(_ensure(obj, dfield, inner), mapping)
                continue
            raw = mapping.get(key)
            if raw is None:
                continue
            if not isinstance(raw, dict):
                raise _mismatch(raw, inner)
            _apply(_ensure(obj, dfield, inner), raw)
            continue

        raw = mapping.get(key)
        if raw is not None:
            setattr(obj, dfield.name, _decode(raw, type_))


def _type_label(type_):
    if typing.get_origin(type_) is None and isinstance(type_, type):
        return type_.__name__
    return str(type_).replace("typing.", "")


def _mismatch(raw, type_):
    return ValueError(f"cannot unmarshal {raw!r} into {_type_label(type_)}")


def _scalar_text(raw):
    if isinstance(raw, bool):
        return "true" if raw else "false"
    return str(raw)


def _decode(raw, type_):
    target = _strip_optional(type_)
    origin = typing.get_origin(target)

    if target is typing.Any:
        return raw
    if origin is None and isinstance(target, type) and _has_custom(target):
        if isinstance(raw, (list, dict)):
            raise _mismatch(raw, target)
        return convert(_scalar_text(raw), target)
    if target is str:
        if isinstance(raw, (list, dict)):
            raise _mismatch(raw, target)
        return _scalar_text(raw)
    if target is bool:
        if isinstance(raw, bool):
            return raw
        raise _mismatch(raw, target)
    if target is int:
        if isinstance(raw, int) and not isinstance(raw, bool):
            return raw
        if isinstance(raw, float) and raw.is_integer():
            return int(raw)
        raise _mismatch(raw, target)
    if target is float:
        if isinstance(raw, (int, float)) and not isinstance(raw, bool):
            return float(raw)
        raise _mismatch(raw, target)
    if target is timedelta:
        if isinstance(raw, str):
            return parse_duration(raw)
        if isinstance(raw, int) and not isinstance(raw, bool):
            return timedelta(microseconds=raw // 1000)
        raise _mismatch(raw, target)
    if origin is list or (isinstance(target, type) and issubclass(target, list)):
        if not isinstance(raw, list):
            raise _mismatch(raw, target)
        args = typing.get_args(target)
        element = args[0] if args else typing.Any
        items = [_decode(item, element) for item in raw]
        return items if origin is not None else target(items)
    if origin is dict or target is dict:
        if not isinstance(raw, dict):
            raise _mismatch(raw, target)
        args = typing.get_args(target)
        key_type, value_type = args if args else (typing.Any, typing.Any)
        return {_decode(k, key_type): _decode(v, value_type) for k, v in raw.items()}
    raise TypeError(f"unsupported field type {_type_label(type_)}")