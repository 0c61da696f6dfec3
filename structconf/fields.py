"""Discovery of configuration fields and conversion of text into values."""

import dataclasses
import inspect
import math
import re
import types
import typing
import unicodedata
from dataclasses import dataclass
from dataclasses import field as dc_field
from datetime import timedelta
from typing import Any, Optional

from .errors import ConfError, InvalidStructError

TAG_KEY = "conf"
EMBED_KEY = "embed"
BUILD_KEY = "build"
DESC_KEY = "desc"

_INT_MIN = -(1 << 63)
_INT_MAX = (1 << 63) - 1

_TRUE_WORDS = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_FALSE_WORDS = frozenset({"0", "f", "F", "FALSE", "false", "False"})

_FLAG_OPTIONS = {
    "noprint": "noprint",
    "required": "required",
    "notzero": "notzero",
    "mask": "mask",
    "immutable": "immutable",
}
_VALUE_OPTIONS = {
    "default": "default_val",
    "env": "env_name",
    "flag": "flag_name",
    "help": "help",
}

_CUSTOM_METHODS = ("set", "unmarshal_text", "unmarshal_binary")

_DURATION_UNITS = {
    "ns": 1,
    "us": 1_000,
    "\u00b5s": 1_000,
    "\u03bcs": 1_000,
    "ms": 1_000_000,
    "s": 1_000_000_000,
    "m": 60 * 1_000_000_000,
    "h": 3600 * 1_000_000_000,
}
_DURATION_SEGMENT = re.compile(r"([0-9]*)(\.[0-9]*)?([^0-9.]*)")

_LOWER, _UPPER, _NUMBER, _OTHER = range(4)

_SIMPLE_TYPES = {
    "str": str,
    "int": int,
    "float": float,
    "bool": bool,
    "bytes": bytes,
    "list": list,
    "dict": dict,
    "timedelta": timedelta,
    "Any": Any,
}


class Args(list):
    """Command line arguments left over after the flags were parsed."""

    def num(self, i):
        """Return the i'th argument, or an empty string when it is absent."""
        return self[i] if 0 <= i < len(self) else ""


@dataclass
class Version:
    """Build and description shown for ``--version``; always flattened."""

    build: str = ""
    desc: str = ""


@dataclass
class FieldOptions:
    """Options read from a field's ``conf`` tag."""

    help: str = ""
    default_val: str = ""
    env_name: str = ""
    flag_name: str = ""
    short_flag_char: str = ""
    noprint: bool = False
    required: bool = False
    mask: bool = False
    notzero: bool = False
    immutable: bool = False


@dataclass
class Field:
    """A settable leaf of a configuration object."""

    name: str
    flag_key: list
    env_key: list
    type_: Any
    options: FieldOptions = dc_field(default_factory=FieldOptions)
    bool_field: bool = False
    owner: Any = None
    attr: str = ""

    def current(self):
        """Return the value the field holds now."""
        if self.owner is None:
            return None
        return getattr(self.owner, self.attr)

    def assign(self, value):
        """Store a new value in the field."""
        if self.owner is None:
            raise ConfError(f"field {self.name} is not bound to a configuration")
        setattr(self.owner, self.attr, value)

    @property
    def type_name(self):
        return _type_name(self.type_)

    def is_zero(self):
        """Tell whether the field holds its type's zero value."""
        value = self.current()
        if value is None:
            return True
        if _optional_inner(self.type_) is not None:
            return False
        return _is_zero_value(value)


def parse_tag(tag):
    """Parse a ``conf`` tag such as ``"default:8080,short:p"``."""
    options = FieldOptions()
    if not tag:
        return options

    for part in tag.split(","):
        prop, sep, raw = part.partition(":")
        if not sep:
            if prop in _FLAG_OPTIONS:
                setattr(options, _FLAG_OPTIONS[prop], True)
            continue

        value = raw.strip()
        if not value:
            raise ConfError(f'tag "{prop}" missing a value')
        if prop == "short":
            if len(value) != 1:
                raise ConfError(f'short value must be a single rune, got "{value}"')
            options.short_flag_char = value
        elif prop in _VALUE_OPTIONS:
            setattr(options, _VALUE_OPTIONS[prop], value)

    if options.required and options.default_val:
        raise ConfError("cannot set both `required` and `default`")
    return options


def _char_class(char):
    category = unicodedata.category(char)
    if category == "Ll":
        return _LOWER
    if category == "Lu":
        return _UPPER
    if category == "Nd":
        return _NUMBER
    return _OTHER


def camel_split(src):
    """Split a camel-case name into its words, keeping acronyms together."""
    if not src:
        return []
    if len(src) < 2:
        return [src]

    out = []
    last_class = _char_class(src[0])
    last_idx = 0
    final = len(src) - 1
    for i, char in enumerate(src):
        cls = _char_class(char)
        if cls != last_class:
            if last_class == _UPPER and cls != _NUMBER:
                # Keep the last capital with the word it starts: FOOBar -> FOO Bar.
                if i - last_idx > 1:
                    out.append(src[last_idx:i - 1])
                    last_idx = i - 1
            else:
                out.append(src[last_idx:i])
                last_idx = i
        if i == final:
            out.append(src[last_idx:])
        last_class = cls
    return out


def _split_name(name):
    return [word for part in name.split("_") if part for word in camel_split(part)]


def parse_duration(value):
    """Parse a duration such as ``"1h30m"`` or ``"-1.5s"`` into a timedelta."""
    invalid = ValueError(f'time: invalid duration "{value}"')
    text = value
    negative = False
    if text[:1] in ("-", "+"):
        negative = text[0] == "-"
        text = text[1:]
    if text == "0":
        return timedelta(0)
    if not text:
        raise invalid

    limit = _INT_MAX + 1 if negative else _INT_MAX
    total = 0
    pos = 0
    while pos < len(text):
        if text[pos] not in "0123456789.":
            raise invalid
        match = _DURATION_SEGMENT.match(text, pos)
        whole, fraction, unit = match.groups()
        fraction_digits = fraction[1:] if fraction else ""
        if not whole and not fraction_digits:
            raise invalid
        if not unit:
            raise ValueError(f'time: missing unit in duration "{value}"')
        scale = _DURATION_UNITS.get(unit)
        if scale is None:
            raise ValueError(f'time: unknown unit "{unit}" in duration "{value}"')
        amount = int(whole or "0") * scale
        if fraction_digits:
            amount += int(fraction_digits) * scale // 10 ** len(fraction_digits)
        total += amount
        if total > limit:
            raise invalid
        pos = match.end()

    micros = total // 1000
    return timedelta(microseconds=-micros if negative else micros)


def _fraction(value, precision):
    whole, frac = divmod(value, 10 ** precision)
    if frac == 0:
        return whole, ""
    return whole, "." + str(frac).rjust(precision, "0").rstrip("0")


def format_duration(value):
    """Render a timedelta the way durations are written, e.g. ``"1m30s"``."""
    nanos = ((value.days * 86400 + value.seconds) * 1_000_000 + value.microseconds) * 1000
    if nanos == 0:
        return "0s"
    sign = "-" if nanos < 0 else ""
    magnitude = abs(nanos)

    if magnitude < 1_000_000_000:
        if magnitude < 1_000_000:
            whole, frac = _fraction(magnitude, 3)
            unit = "\u00b5s"
        else:
            whole, frac = _fraction(magnitude, 6)
            unit = "ms"
        return f"{sign}{whole}{frac}{unit}"

    seconds, frac = _fraction(magnitude, 9)
    minutes, secs = divmod(seconds, 60)
    text = f"{secs}{frac}s"
    if minutes:
        hours, mins = divmod(minutes, 60)
        text = f"{mins}m{text}"
        if hours:
            text = f"{hours}h{text}"
    return sign + text


def _syntax_error(text):
    return ValueError(f'parsing "{text}": invalid syntax')


def _parse_bool(text):
    if text in _TRUE_WORDS:
        return True
    if text in _FALSE_WORDS:
        return False
    raise _syntax_error(text)


def _parse_int(text):
    negative = text.startswith("-")
    body = text[1:] if text.startswith(("+", "-")) else text
    if not body or body[0] in "+-_" or body != body.strip():
        raise _syntax_error(text)
    digits = body
    if len(digits) > 1 and digits[0] == "0" and digits[1] not in "xXoObB_":
        digits = "0o" + digits[1:]
    try:
        magnitude = int(digits, 0)
    except ValueError:
        raise _syntax_error(text) from None
    result = -magnitude if negative else magnitude
    if not _INT_MIN <= result <= _INT_MAX:
        raise ValueError(f'parsing "{text}": value out of range')
    return result


def _parse_float(text):
    if not text or text != text.strip() or "_" in text:
        raise _syntax_error(text)
    try:
        result = float.fromhex(text) if "0x" in text.lower() else float(text)
    except ValueError:
        raise _syntax_error(text) from None
    if math.isinf(result) and "inf" not in text.lower():
        raise ValueError(f'parsing "{text}": value out of range')
    return result


def _optional_inner(type_):
    if typing.get_origin(type_) in (typing.Union, types.UnionType):
        members = typing.get_args(type_)
        others = [member for member in members if member is not type(None)]
        if len(members) == 2 and len(others) == 1:
            return others[0]
    return None


def _deref(type_):
    inner = _optional_inner(type_)
    return type_ if inner is None else inner


def _custom_method(obj):
    for name in _CUSTOM_METHODS:
        if callable(getattr(obj, name, None)):
            return name
    return None


def _apply_custom(obj, method, value):
    if method == "set":
        obj.set(value)
    else:
        getattr(obj, method)(value.encode())


def _is_struct(type_):
    return (
        typing.get_origin(type_) is None
        and isinstance(type_, type)
        and dataclasses.is_dataclass(type_)
        and _custom_method(type_) is None
    )


def _is_zero_value(value):
    if value is None:
        return True
    if isinstance(value, (bool, int, float, complex, str, bytes, timedelta)):
        return not value
    if isinstance(value, (list, dict, tuple, set, frozenset)):
        return len(value) == 0
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return all(_is_zero_value(getattr(value, f.name)) for f in dataclasses.fields(value))
    return False


def _type_name(type_):
    if typing.get_origin(type_) is None and isinstance(type_, type):
        return type_.__name__
    return str(type_).replace("typing.", "")


def convert(value, type_):
    """Convert configuration text into a value of the given type."""
    target = _deref(type_)
    origin = typing.get_origin(target)

    if origin is None:
        method = _custom_method(target)
        if method is not None and isinstance(target, type):
            obj = target()
            _apply_custom(obj, method, value)
            return obj
        if target is str:
            return value
        if target is bool:
            return _parse_bool(value)
        if target is int:
            return _parse_int(value)
        if target is float:
            return _parse_float(value)
        if target is timedelta:
            return parse_duration(value)
        if isinstance(target, type) and issubclass(target, Args):
            return target(value.split(";"))

    if origin is list or target is list:
        (element,) = typing.get_args(target) or (str,)
        return [convert(item, element) for item in value.split(";")]

    if origin is dict or target is dict:
        key_type, value_type = typing.get_args(target) or (str, str)
        result = {}
        if value.strip():
            for pair in value.split(";"):
                parts = pair.split(":")
                if len(parts) != 2:
                    raise ValueError(f'invalid map item: "{pair}"')
                result[convert(parts[0], key_type)] = convert(parts[1], value_type)
        return result

    raise TypeError(f"unsupported field type {_type_name(type_)}")


def _resolve_name(cls, name):
    name = name.strip()
    if name in _SIMPLE_TYPES:
        return _SIMPLE_TYPES[name]
    module = inspect.getmodule(cls)
    namespace = vars(module) if module is not None else {}
    return namespace.get(name, name)


def _field_type(cls, dfield):
    """The declared type of a dataclass field, resolving plain string annotations."""
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


def extract_fields(prefix, target):
    """List the settable fields of a dataclass instance, descending into nested ones."""
    if isinstance(target, type) or not dataclasses.is_dataclass(target):
        raise InvalidStructError()

    prefix = list(prefix or [])
    owner_type = type(target)
    result = []

    for dfield in dataclasses.fields(target):
        tag = dfield.metadata.get(TAG_KEY, "")
        if dfield.name.startswith("_") or tag == "-":
            continue

        try:
            options = parse_tag(tag)
        except ConfError as exc:
            raise ConfError(
                f"conf: error parsing tags for field {dfield.name}: {exc}"
            ) from exc

        key = prefix + _split_name(dfield.name)
        type_ = _field_type(owner_type, dfield)
        inner = _deref(type_)
        value = getattr(target, dfield.name)

        if _is_struct(inner):
            if value is None:
                value = inner()
                setattr(target, dfield.name, value)
            embedded = dfield.metadata.get(EMBED_KEY, False) or issubclass(inner, Version)
            result.extend(extract_fields(prefix if embedded else key, value))
            continue

        env_key = options.env_name.split("_") if options.env_name else list(key)
        flag_key = options.flag_name.split("-") if options.flag_name else list(key)
        result.append(
            Field(
                name=dfield.name,
                flag_key=flag_key,
                env_key=env_key,
                type_=type_,
                options=options,
                bool_field=inner is bool and value is not None,
                owner=target,
                attr=dfield.name,
            )
        )

    return result


def process_field(setting_default, value, field):
    """Store text into a field; a default never replaces a non-zero value."""
    current = field.current()
    if setting_default and not _is_zero_value(current):
        return
    if current is not None:
        method = _custom_method(current)
        if method is not None and not isinstance(current, type):
            _apply_custom(current, method, value)
            return
    field.assign(convert(value, field.type_))