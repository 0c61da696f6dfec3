"""Exceptions raised while reading configuration."""


class ConfError(Exception):
    """Base class for every configuration error."""


class InvalidStructError(ConfError, TypeError):
    """The configuration target is not a dataclass instance."""

    def __init__(self, message="configuration must be a dataclass instance"):
        super().__init__(message)


class FieldError(ConfError):
    """A value could not be assigned to a single configuration field."""

    def __init__(self, field_name, type_name, value, cause):
        super().__init__(field_name, type_name, value, cause)
        self.field_name = field_name
        self.type_name = type_name
        self.value = value
        self.cause = cause

    def __str__(self):
        return (
            f"conf: error assigning to field {self.field_name}: "
            f"converting '{self.value}' to type {self.type_name}. "
            f"details: {self.cause}"
        )


class HelpWanted(ConfError):
    """Help was requested on the command line; ``text`` holds what to show."""

    message = "help wanted"

    def __init__(self, text=""):
        super().__init__(self.message)
        self.text = text


class VersionWanted(HelpWanted):
    """Version information was requested on the command line."""

    message = "version wanted"