"""Usage text listing the command line options and environment variables."""

import sys
import types
import typing
import urllib.parse
from datetime import timedelta

from .fields import BUILD_KEY, DESC_KEY, Args, Field, FieldOptions
from .sources import env_usage, flag_usage

HELP_KEY = "help"
VERSION_KEY = "version"

_MASK = "xxxxxx"
_USERINFO_MASK = "xxxxxx:xxxxxx"
_PADDING = 2

_SCALAR_NAMES = {bool: "bool", float: "float", int: "int", str: "string"}


def mask_value(value):
    """Hide a value entirely, or only the user:password part of a URL."""
    if not value:
        return ""
    try:
        netloc = urllib.parse.urlsplit(value).netloc
    except ValueError:
        return _MASK
    userinfo = netloc.rpartition("@")[0]
    if userinfo:
        return value.replace(userinfo, _USERINFO_MASK, 1)
    return _MASK


def _strip_optional(type_):
    if typing.get_origin(type_) in (typing.Union, types.UnionType):
        members = typing.get_args(type_)
        others = [member for member in members if member is not type(None)]
        if len(members) == 2 and len(others) == 1:
            return others[0]
    return type_


def _is_list(type_):
    return typing.get_origin(type_) is list or (
        isinstance(type_, type) and issubclass(type_, list)
    )


def _is_args(field):
    return isinstance(field.type_, type) and issubclass(field.type_, Args)


def type_and_help(field):
    """Return the ``<type>`` label and the help text shown for a field.

    A word in single quotes inside the help text names the type and loses
    its quotes in the help text.
    """
    usage = field.options.help
    name = ""
    start = usage.find("'")
    if start >= 0:
        j = start + 1
        while j < len(usage):
            if usage[j] == "'":
                name = usage[start + 1:j]
                usage = usage[:start] + name + usage[j + 1:]
            j += 1

    is_slice = False
    if field.type_ is not None:
        target = _strip_optional(field.type_)
        if _is_list(target):
            args = typing.get_args(target)
            target = args[0] if args else str
            is_slice = True

        if not name:
            if target is timedelta:
                # Only a plain duration field is labelled as one.
                name = "duration" if field.type_ is timedelta else "int"
            else:
                name = _SCALAR_NAMES.get(target, "value")

    if is_slice:
        name = f"<{name}>,[{name}...]"
    elif name:
        name = f"<{name}>"
    return name, usage


def opt_string(field):
    """The parenthesised option summary, e.g. ``(required)``."""
    options = field.options
    flags = [
        label
        for label, present in (
            ("required", options.required),
            ("notzero", options.notzero),
            ("noprint", options.noprint),
            ("immutable", options.immutable),
        )
        if present
    ]
    default = mask_value(options.default_val) if options.mask else options.default_val
    if default:
        flags.append(f"default: {default}")
    return f"({','.join(flags)})" if flags else ""


def _builtin_field(name, short, help_text):
    return Field(
        name=name,
        flag_key=[name],
        env_key=[],
        type_=bool,
        options=FieldOptions(short_flag_char=short, help=help_text),
        bool_field=True,
    )


def _sort_key(field):
    return "-".join(field.flag_key).lower()


def _align(rows):
    """Lay out tab-separated cells in columns; the last cell of a row is free text."""
    widths = []
    out = []

    def write_rows(start, end):
        for row in rows[start:end]:
            out.append(
                "".join(
                    cell.ljust(widths[j]) if j < len(widths) else cell
                    for j, cell in enumerate(row)
                )
            )

    def layout(first, last):
        column = len(widths)
        current = first
        while current < last:
            if column >= len(rows[current]) - 1:
                current += 1
                continue
            write_rows(first, current)
            first = current
            width = 0
            while current < last and column < len(rows[current]) - 1:
                width = max(width, len(rows[current][column]) + _PADDING)
                current += 1
            widths.append(width)
            layout(first, current)
            widths.pop()
            first = current
        write_rows(first, last)

    layout(0, len(rows))
    return out


def _option_rows(fields):
    rows = []
    for field in fields:
        if _is_args(field) or field.name in (BUILD_KEY, DESC_KEY):
            continue
        type_name, help_text = type_and_help(field)
        if field.name in (HELP_KEY, VERSION_KEY):
            # Help and version are switches: no type and no options to show.
            rows.append([f"  {flag_usage(field)}", "", "", help_text])
        else:
            rows.append([f"  {flag_usage(field)}", type_name, opt_string(field), help_text])
    rows.append([""])
    return rows


def _env_rows(namespace, fields):
    rows = []
    for field in fields:
        if _is_args(field) or field.name in (BUILD_KEY, DESC_KEY, HELP_KEY, VERSION_KEY):
            continue
        type_name, help_text = type_and_help(field)
        rows.append(
            [f"  {env_usage(namespace, field)}", type_name, opt_string(field), help_text]
        )
    return rows


def format_usage(namespace, fields, program=None):
    """Build the full usage text for a list of fields."""
    if program is None:
        program = sys.argv[0].rpartition("/")[2]

    fields = list(fields)
    fields.append(_builtin_field(HELP_KEY, "h", "display this help message"))
    if any(field.name == BUILD_KEY for field in fields):
        fields.append(_builtin_field(VERSION_KEY, "v", "display version"))
    fields.sort(key=_sort_key)

    lines = [f"Usage: {program} [options...] [arguments...]", "", "OPTIONS"]
    lines.extend(_align(_option_rows(fields)))
    lines.append("ENVIRONMENT")
    lines.extend(_align(_env_rows(namespace, fields)))
    return "\n".join(lines) + "\n"