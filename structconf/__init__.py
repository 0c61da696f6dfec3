"""Fill dataclass configuration objects from defaults, environment variables, flags and YAML."""

__version__ = "3.0.0"