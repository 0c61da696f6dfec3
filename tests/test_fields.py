from dataclasses import dataclass, field
from datetime import timedelta
from typing import Optional

import pytest

from structconf.errors import ConfError, InvalidStructError
from structconf.fields import (
    Args,
    Field,
    FieldOptions,
    Version,
    camel_split,
    convert,
    extract_fields,
    format_duration,
    parse_duration,
    parse_tag,
    process_field,
)


@dataclass
class IP:
    name: str = field(default="", metadata={"conf": "default:localhost"})
    ip: str = field(default="", metadata={"conf": "default:127.0.0.0,env:IP_VAR"})


@dataclass
class Embed:
    name: str = field(default="", metadata={"conf": "default:bill"})
    duration: timedelta = field(
        default=timedelta(0), metadata={"conf": "default:1s,flag:e-dur,short:d"}
    )


@dataclass
class Config:
    an_int: dict[str, int] = field(
        default_factory=dict, metadata={"conf": "default:min:0;max:9,help:map example"}
    )
    a_string: list[str] = field(
        default_factory=list, metadata={"conf": "default:A;B;C,short:a,help:slice example"}
    )
    enabled: bool = False
    skip: str = field(default="", metadata={"conf": "-"})
    ip: IP = field(default_factory=IP)
    embed: Embed = field(default_factory=Embed, metadata={"embed": True})
    _hidden: int = 0


@dataclass
class Point:
    x: int = 0
    y: int = 0

    def unmarshal_text(self, data):
        x, y = data.decode().split(",")
        self.x = int(x)
        self.y = int(y)


class Upper:
    def __init__(self):
        self.text = ""

    def set(self, value):
        self.text = value.upper()


@dataclass
class Simple:
    port: int = 8080
    limit: Optional[int] = None
    where: Point = field(default_factory=Point)
    nested: Optional[IP] = None


@dataclass
class WithVersion:
    version: Version = field(default_factory=lambda: Version("v1.0.0", "Service Description"))
    port: int = 0


@dataclass
class BadTag:
    port: int = field(default=0, metadata={"conf": "short:ab"})


def _by_name(fields):
    return {f.name: f for f in fields}


def test_parse_tag_reads_values_and_flags():
    opts = parse_tag("default:min:0;max:9,short:a,help:map example,mask,immutable")
    assert opts == FieldOptions(
        help="map example",
        default_val="min:0;max:9",
        short_flag_char="a",
        mask=True,
        immutable=True,
    )


def test_parse_tag_empty_gives_defaults():
    assert parse_tag("") == FieldOptions()


@pytest.mark.parametrize(
    "tag, message",
    [
        ("default:", "missing a value"),
        ("short:ab", "single rune"),
        ("required,default:1", "cannot set both"),
    ],
)
def test_parse_tag_errors(tag, message):
    with pytest.raises(ConfError, match=message):
        parse_tag(tag)


@pytest.mark.parametrize(
    "src, expected",
    [
        ("", []),
        ("A", ["A"]),
        ("FOOBar", ["FOO", "Bar"]),
        ("AString", ["A", "String"]),
        ("APIHost", ["API", "Host"]),
    ],
)
def test_camel_split(src, expected):
    assert camel_split(src) == expected


@pytest.mark.parametrize("src", ["ReadTimeout", "IP", "Name1", "HTTPServer2Go"])
def test_camel_split_keeps_every_character(src):
    assert "".join(camel_split(src)) == src


@pytest.mark.parametrize(
    "text, expected",
    [
        ("1s", timedelta(seconds=1)),
        ("1h30m", timedelta(hours=1, minutes=30)),
        ("1.5s", timedelta(seconds=1.5)),
        ("-1m", -timedelta(minutes=1)),
        ("0", timedelta(0)),
    ],
)
def test_parse_duration(text, expected):
    assert parse_duration(text) == expected


@pytest.mark.parametrize(
    "text, message",
    [
        ("", "invalid duration"),
        ("-", "invalid duration"),
        ("abc", "invalid duration"),
        (".s", "invalid duration"),
        ("1", "missing unit"),
        ("1x", "unknown unit"),
    ],
)
def test_parse_duration_errors(text, message):
    with pytest.raises(ValueError, match=message):
        parse_duration(text)


@pytest.mark.parametrize(
    "text", ["1s", "1m30s", "1h0m0s", "500ms", "1.5s", "0s", "-2m3s", "250\u00b5s"]
)
def test_duration_round_trip(text):
    assert format_duration(parse_duration(text)) == text


@pytest.mark.parametrize(
    "text, expected", [("0x1f", 0x1F), ("010", 0o10), ("-42", -42), ("+7", 7)]
)
def test_convert_int_prefixes(text, expected):
    assert convert(text, int) == expected


@pytest.mark.parametrize(
    "text, message",
    [
        ("abc", "invalid syntax"),
        ("1 ", "invalid syntax"),
        ("", "invalid syntax"),
        ("9223372036854775808", "out of range"),
    ],
)
def test_convert_int_errors(text, message):
    with pytest.raises(ValueError, match=message):
        convert(text, int)


@pytest.mark.parametrize("text", ["1", "t", "T", "TRUE", "true", "True"])
def test_convert_bool_true(text):
    assert convert(text, bool) is True


@pytest.mark.parametrize("text", ["0", "f", "F", "FALSE", "false", "False"])
def test_convert_bool_false(text):
    assert convert(text, bool) is False


def test_convert_bool_rejects_other_words():
    with pytest.raises(ValueError, match="invalid syntax"):
        convert("yes", bool)


def test_convert_float():
    assert convert("1.5", float) == 1.5
    with pytest.raises(ValueError, match="out of range"):
        convert("1e400", float)


def test_convert_list_and_map():
    assert convert("1;2;3", list[int]) == [1, 2, 3]
    assert convert("min:0;max:9", dict[str, int]) == {"min": 0, "max": 9}
    assert convert("   ", dict[str, int]) == {}


def test_convert_bad_map_item():
    with pytest.raises(ValueError, match="invalid map item"):
        convert("a:1;bad", dict[str, int])


def test_convert_optional_uses_inner_type():
    assert convert("5", Optional[int]) == 5


def test_convert_custom_types():
    assert convert("3,4", Point) == Point(3, 4)
    assert convert("abc", Upper).text == "ABC"


def test_convert_unsupported_type():
    with pytest.raises(TypeError, match="unsupported"):
        convert("1", complex)


def test_extract_fields_keys_follow_names_and_tags():
    fields = extract_fields(None, Config())
    flags = {"-".join(f.flag_key).lower() for f in fields}
    assert flags == {"an-int", "a-string", "enabled", "ip-name", "ip-ip", "name", "e-dur"}


def test_extract_fields_env_keys():
    fields = extract_fields(None, Config())
    envs = {"_".join(f.env_key).upper() for f in fields}
    assert "IP_VAR" in envs
    assert "DURATION" in envs
    assert "IP_NAME" in envs


def test_extract_fields_marks_bool_fields():
    fields = _by_name(extract_fields(None, Config()))
    assert fields["enabled"].bool_field is True
    assert fields["an_int"].bool_field is False


def test_extract_fields_custom_type_is_a_leaf():
    fields = _by_name(extract_fields(None, Simple()))
    assert fields["where"].type_ is Point


def test_extract_fields_allocates_optional_struct():
    cfg = Simple()
    extract_fields(None, cfg)
    assert cfg.nested == IP()


def test_extract_fields_flattens_version():
    fields = extract_fields(None, WithVersion())
    assert [f.flag_key for f in fields] == [["build"], ["desc"], ["port"]]
    assert fields[0].current() == "v1.0.0"


def test_extract_fields_with_prefix():
    fields = extract_fields(["outer"], Simple())
    assert fields[0].flag_key == ["outer", "port"]


@pytest.mark.parametrize("target", [Config, 5, "text"])
def test_extract_fields_rejects_non_instances(target):
    with pytest.raises(InvalidStructError):
        extract_fields(None, target)


def test_extract_fields_wraps_tag_errors():
    with pytest.raises(ConfError, match="error parsing tags for field port"):
        extract_fields(None, BadTag())


def test_process_field_default_keeps_existing_value():
    cfg = Simple()
    port = _by_name(extract_fields(None, cfg))["port"]
    process_field(True, "9000", port)
    assert cfg.port == 8080
    process_field(False, "9000", port)
    assert cfg.port == 9000


def test_process_field_default_fills_optional():
    cfg = Simple()
    limit = _by_name(extract_fields(None, cfg))["limit"]
    assert limit.is_zero() is True
    process_field(True, "5", limit)
    assert cfg.limit == 5
    assert limit.is_zero() is False


def test_process_field_uses_custom_method_in_place():
    cfg = Simple()
    where = _by_name(extract_fields(None, cfg))["where"]
    original = cfg.where
    process_field(False, "3,4", where)
    assert cfg.where is original
    assert (cfg.where.x, cfg.where.y) == (3, 4)


def test_process_field_reports_conversion_errors():
    cfg = Simple()
    port = _by_name(extract_fields(None, cfg))["port"]
    with pytest.raises(ValueError, match="invalid syntax"):
        process_field(False, "abc", port)


def test_unbound_field_cannot_be_assigned():
    fld = Field(name="help", flag_key=["help"], env_key=["HELP"], type_=bool)
    assert fld.current() is None
    with pytest.raises(ConfError, match="not bound"):
        fld.assign(True)


def test_field_type_name():
    fields = _by_name(extract_fields(None, Simple()))
    assert fields["port"].type_name == "int"
    assert fields["where"].type_name == "Point"


def test_args_num():
    args = Args(["serve", "http"])
    assert args.num(0) == "serve"
    assert args.num(1) == "http"
    assert args.num(2) == ""
    assert args.num(-1) == ""