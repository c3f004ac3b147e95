"""
domain/field_types.py
---------------------
The field type system as an explicit tagged variant.

FieldType pairs a FieldKind with the only kind-specific payload there is
(the relation target). Every coercion site goes through encode()/decode(),
which dispatch through _CODECS; the module refuses to import if a kind has
no codec, so adding a kind without teaching the store how to read and write
it fails immediately.

Storage encoding (DirectoryValue.value is always text):
  bool              "true" / "false"
  integer, decimal  canonical decimal string ("42", "12.5")
  date, time,
  datetime          ISO-8601
  json              serialized JSON document, parsed back on read
  relation          target record id; existence is not checked here
  string, text,
  file              stored as given
"""

import json
from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple
from uuid import UUID

from erp_directory.core.errors import InvalidReference, TypeMismatch


class FieldKind(str, Enum):
    string = "string"
    text = "text"
    integer = "integer"
    decimal = "decimal"
    bool = "bool"
    date = "date"
    time = "time"
    datetime = "datetime"
    json = "json"
    file = "file"
    relation = "relation"


@dataclass(frozen=True)
class FieldType:
    kind: FieldKind
    relation_id: Optional[str] = None

    @classmethod
    def parse(cls, type_tag: str, relation_id: Optional[str] = None) -> "FieldType":
        """Build a FieldType from a stored/requested tag.

        "number" is accepted as the legacy spelling of integer.
        """
        tag = "integer" if type_tag == "number" else type_tag
        try:
            kind = FieldKind(tag)
        except ValueError:
            raise TypeMismatch(f"Unknown field type '{type_tag}'", type=type_tag)
        if kind is FieldKind.relation:
            if not relation_id:
                raise InvalidReference("Relation fields require a target directory")
            return cls(kind, relation_id)
        return cls(kind)

    @classmethod
    def of(cls, field: Any) -> "FieldType":
        """FieldType of a DirectoryField row.

        Read paths tolerate a relation whose target was deleted (relation_id
        nulled by the database), so this does not go through parse().
        """
        tag = "integer" if field.type == "number" else field.type
        return cls(FieldKind(tag), field.relation_id if tag == "relation" else None)

    @property
    def is_relation(self) -> bool:
        return self.kind is FieldKind.relation


# ── Encoders: raw API value -> stored text ────────────────────────────────────

def _mismatch(kind: FieldKind, raw: Any) -> TypeMismatch:
    return TypeMismatch(
        f"Value {raw!r} is not a valid {kind.value}",
        type=kind.value,
    )


def _encode_plain(kind: FieldKind, raw: Any) -> str:
    if isinstance(raw, str):
        return raw
    raise _mismatch(kind, raw)


def _encode_integer(kind: FieldKind, raw: Any) -> str:
    if isinstance(raw, bool):
        raise _mismatch(kind, raw)
    if isinstance(raw, int):
        return str(raw)
    if isinstance(raw, float) and raw.is_integer():
        return str(int(raw))
    if isinstance(raw, (str, Decimal)):
        try:
            number = Decimal(str(raw).strip())
        except InvalidOperation:
            raise _mismatch(kind, raw)
        if number.is_finite() and number == number.to_integral_value():
            return str(int(number))
    raise _mismatch(kind, raw)


def _canonical_decimal(number: Decimal) -> str:
    text = format(number.normalize(), "f")
    return "0" if text in ("-0", "0") else text


def _encode_decimal(kind: FieldKind, raw: Any) -> str:
    if isinstance(raw, bool):
        raise _mismatch(kind, raw)
    if isinstance(raw, (int, float, Decimal, str)):
        try:
            number = Decimal(str(raw).strip())
        except InvalidOperation:
            raise _mismatch(kind, raw)
        if number.is_finite():
            return _canonical_decimal(number)
    raise _mismatch(kind, raw)


def _encode_bool(kind: FieldKind, raw: Any) -> str:
    if isinstance(raw, bool):
        return "true" if raw else "false"
    if isinstance(raw, str) and raw.strip().lower() in ("true", "false"):
        return raw.strip().lower()
    raise _mismatch(kind, raw)


def _encode_date(kind: FieldKind, raw: Any) -> str:
    if isinstance(raw, datetime):
        raise _mismatch(kind, raw)
    if isinstance(raw, date):
        return raw.isoformat()
    if isinstance(raw, str):
        try:
            return date.fromisoformat(raw.strip()).isoformat()
        except ValueError:
            raise _mismatch(kind, raw)
    raise _mismatch(kind, raw)


def _encode_time(kind: FieldKind, raw: Any) -> str:
    if isinstance(raw, time):
        return raw.isoformat()
    if isinstance(raw, str):
        try:
            return time.fromisoformat(raw.strip()).isoformat()
        except ValueError:
            raise _mismatch(kind, raw)
    raise _mismatch(kind, raw)


def _encode_datetime(kind: FieldKind, raw: Any) -> str:
    if isinstance(raw, datetime):
        return raw.isoformat()
    if isinstance(raw, str):
        try:
            return datetime.fromisoformat(raw.strip()).isoformat()
        except ValueError:
            raise _mismatch(kind, raw)
    raise _mismatch(kind, raw)


def _encode_json(kind: FieldKind, raw: Any) -> str:
    # Strings arrive as JSON text from form inputs
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            raise _mismatch(kind, raw)
    try:
        return json.dumps(raw, ensure_ascii=False)
    except (TypeError, ValueError):
        raise _mismatch(kind, raw)


def _encode_relation(kind: FieldKind, raw: Any) -> str:
    if isinstance(raw, UUID):
        return str(raw)
    if isinstance(raw, str) and raw.strip():
        return raw.strip()
    raise _mismatch(kind, raw)


# ── Decoders: stored text -> Python value ─────────────────────────────────────

def _decode_plain(text: str) -> Any:
    return text


def _decode_integer(text: str) -> Any:
    return int(Decimal(text))


def _decode_bool(text: str) -> Any:
    return text == "true"


_Codec = Tuple[Callable[[FieldKind, Any], str], Callable[[str], Any]]

_CODECS: Dict[FieldKind, _Codec] = {
    FieldKind.string: (_encode_plain, _decode_plain),
    FieldKind.text: (_encode_plain, _decode_plain),
    FieldKind.file: (_encode_plain, _decode_plain),
    FieldKind.integer: (_encode_integer, _decode_integer),
    FieldKind.decimal: (_encode_decimal, Decimal),
    FieldKind.bool: (_encode_bool, _decode_bool),
    FieldKind.date: (_encode_date, date.fromisoformat),
    FieldKind.time: (_encode_time, time.fromisoformat),
    FieldKind.datetime: (_encode_datetime, datetime.fromisoformat),
    FieldKind.json: (_encode_json, json.loads),
    FieldKind.relation: (_encode_relation, _decode_plain),
}

_missing = set(FieldKind) - set(_CODECS)
if _missing:
    raise RuntimeError(f"No codec registered for field kinds: {sorted(k.value for k in _missing)}")


def encode(field_type: FieldType, raw: Any) -> str:
    """Validate a raw value against its field type and return the stored text.

    Raises:
        TypeMismatch: the value cannot be coerced to the field's type.
    """
    encoder, _ = _CODECS[field_type.kind]
    return encoder(field_type.kind, raw)


def decode(field_type: FieldType, text: str) -> Any:
    """Parse stored text back into a typed value.

    Raises ValueError (or a subclass) when the stored text is corrupt; the
    store catches that and falls back to the raw text.
    """
    _, decoder = _CODECS[field_type.kind]
    try:
        return decoder(text)
    except (InvalidOperation, TypeError) as exc:
        raise ValueError(str(exc)) from exc


def is_blank(raw: Any) -> bool:
    return raw is None or (isinstance(raw, str) and not raw.strip())
