"""Filling a configuration dataclass from defaults, the environment and flags.

Fields are described by dataclass metadata under the ``conf`` key, for example
``field(default=0, metadata={"conf": "default:8080,short:p,help:port to use"})``.
Values are applied in this order: external parsers (such as a YAML document),
defaults for fields still at their zero value, environment variables named
``<PREFIX>_<FIELD>``, then command line flags named ``--<field>``.
"""

import math
import sys
from datetime import timedelta

from .errors import ConfError, FieldError, HelpWanted, VersionWanted
from .fields import BUILD_KEY, DESC_KEY, Args, extract_fields, format_duration, process_field
from .sources import EnvSource, FlagSource, long_opt_info
from .usage import format_usage, mask_value


def parse(prefix, cfg, *parsers, args=None, environ=None):
    """Fill ``cfg`` from parsers, defaults, environment variables and flags.

    ``args`` defaults to ``sys.argv[1:]`` and ``environ`` to ``os.environ``.
    Raises HelpWanted (or VersionWanted) carrying the text to display when
    ``--help`` or ``--version`` is given.
    """
    if args is None:
        args = sys.argv[1:]

    for parser in parsers:
        try:
            parser.process(prefix, cfg)
        except Exception as exc:
            raise ConfError(f"external parser: {exc}") from exc

    try:
        _parse(list(args), prefix, cfg, environ)
    except VersionWanted:
        raise VersionWanted(version_info(prefix, cfg)) from None
    except HelpWanted:
        raise HelpWanted(usage_info(prefix, cfg)) from None


def _is_args_field(field):
    return isinstance(field.type_, type) and issubclass(field.type_, Args)


def _set(field, setting_default, value):
    try:
        process_field(setting_default, value, field)
    except Exception as exc:
        raise FieldError(field.name, field.type_name, value, exc) from exc


def _parse(args, namespace, cfg, environ):
    flags = FlagSource(args)
    sources = [EnvSource(namespace, environ), flags]

    fields = extract_fields(None, cfg)
    if not fields:
        raise ConfError("no fields identified in config struct")

    args_field = None
    for field in fields:
        # The version details are set by the program, never overridden.
        if field.name in (BUILD_KEY, DESC_KEY):
            continue

        if _is_args_field(field):
            args_field = field
            continue

        default = field.options.default_val
        if default:
            _set(field, True, default)

        if field.options.immutable:
            continue

        found_override = False
        for source in sources:
            value = source.source(field)
            if value is None:
                continue
            _set(field, False, value)
            found_override = True

        if field.options.notzero and field.is_zero():
            raise ConfError(f"field {field.name} is set to zero value")

        if field.options.required and not found_override:
            raise ConfError(f"required field {field.name} is missing value")

    if args_field is not None:
        args_field.assign(Args(flags.args))


def _format_float(value):
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    if value.is_integer() and abs(value) < 1e21:
        return str(int(value))
    return repr(value)


def _format_value(value):
    if value is None:
        return "<nil>"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, timedelta):
        return format_duration(value)
    if isinstance(value, float):
        return _format_float(value)
    if isinstance(value, (list, tuple)):
        return "[" + " ".join(_format_value(item) for item in value) + "]"
    if isinstance(value, dict):
        try:
            keys = sorted(value)
        except TypeError:
            keys = list(value)
        pairs = " ".join(f"{_format_value(k)}:{_format_value(value[k])}" for k in keys)
        return f"map[{pairs}]"
    return str(value)


def to_string(cfg):
    """Render every printable field as ``--flag=value`` lines, masking where asked."""
    fields = sorted(extract_fields(None, cfg), key=lambda f: "-".join(f.flag_key).lower())
    last = len(fields) - 1
    parts = []
    for i, field in enumerate(fields):
        if field.options.noprint:
            continue
        text = _format_value(field.current())
        if field.options.mask:
            text = mask_value(text)
        parts.append(f"{long_opt_info(field)}={text}")
        if i < last:
            parts.append("\n")
    return "".join(parts)


def usage_info(namespace, cfg):
    """Usage text describing the flags and environment variables of ``cfg``."""
    return format_usage(namespace, extract_fields(None, cfg))


def version_info(namespace, cfg):
    """The version line and description taken from an embedded Version."""
    text = ""
    for field in extract_fields(None, cfg):
        value = field.current()
        if field.name == BUILD_KEY and value:
            text += f"Version: {value}"
            continue
        if field.name == DESC_KEY and value:
            if text:
                text += "\n"
            text += str(value)
            break
    return text