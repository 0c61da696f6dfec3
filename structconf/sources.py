"""Where override values come from: the environment and the command line."""

import os
from typing import NamedTuple

from .errors import ConfError, HelpWanted, VersionWanted

_HELP_FLAGS = frozenset({"help", "h", "?"})
_VERSION_FLAGS = frozenset({"version", "v"})


class _FlagValue(NamedTuple):
    has_value: bool
    value: str


class EnvSource:
    """Environment variables under a namespace, keyed by the rest of their name."""

    def __init__(self, namespace, environ=None):
        environ = os.environ if environ is None else environ
        prefix = f"{namespace.upper()}_" if namespace else ""
        self.values = {
            name[len(prefix):].upper(): value
            for name, value in environ.items()
            if name.startswith(prefix)
        }

    def source(self, field):
        """Return the variable's value for a field, or None when it is not set."""
        return self.values.get("_".join(field.env_key).upper())


class FlagSource:
    """Command line flags; ``args`` keeps what follows the last flag."""

    def __init__(self, args):
        self.values = {}
        remaining = list(args)

        while remaining:
            arg = remaining[0]
            if len(arg) < 2 or arg[0] != "-":
                break

            minuses = 1
            if arg[1] == "-":
                minuses = 2
                if len(arg) == 2:
                    # A bare "--" ends the flags.
                    remaining.pop(0)
                    break

            name = arg[minuses:]
            if not name or name[0] in "-=":
                raise ConfError(f"bad flag syntax: {arg}")
            remaining.pop(0)

            name, sep, value = name.partition("=")
            has_value = bool(sep)

            if name in _HELP_FLAGS:
                raise HelpWanted()
            if name in _VERSION_FLAGS:
                raise VersionWanted()

            # Without "=", the next argument is the value unless it looks like a flag.
            if not has_value and remaining and remaining[0] and remaining[0][0] != "-":
                value = remaining.pop(0)

            self.values[name] = _FlagValue(has_value, value)

        self.args = remaining

    def _lookup(self, key, is_bool):
        entry = self.values.get(key.lower())
        if entry is None:
            return None
        if not is_bool or entry.has_value:
            return entry.value

        # A bare boolean flag means true; a word taken after it was an argument.
        if entry.value:
            self.args.insert(0, entry.value)
        return "true"

    def source(self, field):
        """Return the flag's value for a field, or None when it was not given."""
        short = field.options.short_flag_char
        if short:
            value = self._lookup(short, field.bool_field)
            if value is not None:
                return value
        return self._lookup("-".join(field.flag_key), field.bool_field)


def env_usage(namespace, field):
    """Name of the environment variable that sets a field."""
    name = namespace.upper() + "_" + "_".join(field.env_key).upper()
    return name if namespace else name[1:]


def flag_usage(field):
    """Short and long flag spelling shown in the usage text."""
    short = field.options.short_flag_char
    lead = f"-{short.lower()}, " if short else "    "
    return lead + "--" + "-".join(field.flag_key).lower()


def long_opt_info(field):
    """Long flag spelling used when printing a configuration."""
    return "    --" + "-".join(field.flag_key).lower()