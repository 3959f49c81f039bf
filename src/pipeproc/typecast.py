from __future__ import annotations

import enum
from dataclasses import MISSING, fields, is_dataclass
from types import NoneType, UnionType
from typing import TYPE_CHECKING, Any, Protocol, TypeVar, Union

from typing_extensions import TypeAlias, get_args, get_origin, get_type_hints, overload

if TYPE_CHECKING:
    from _typeshed import DataclassInstance

    T_Data = TypeVar("T_Data", bound=DataclassInstance)


T = TypeVar("T")
T_Enum = TypeVar("T_Enum", bound=enum.Enum)

Primitive: TypeAlias = (
    "str | float | int | bool | None | list[Primitive] | dict[str, Primitive]"
)


class TypeCastError(Exception):
    def __init__(self, key: str, message: str) -> None:
        self.key = key
        self.message = message
        super().__init__(f"Unable to parse config key {key!r}: {message}")


def _build_obj_key(key: str, next_key: str) -> str:
    return f"{key}{'.' if key else ''}{next_key}"


def _coerce_dataclass(typ: type[T_Data], val: Primitive, *, key: str) -> T_Data:
    val = _coerce_type(dict, val, key=key)
    # resolve string annotations left by `from __future__ import annotations`
    hints = get_type_hints(typ)
    all_fields = {f.name: hints.get(f.name, Any) for f in fields(typ)}

    unknown = sorted(set(val).difference(all_fields))
    missing = sorted(
        f.name
        for f in fields(typ)
        if f.init
        and f.default is MISSING
        and f.default_factory is MISSING
        and f.name not in val
    )
    msg_parts = []
    if missing:
        msg_parts.append(f"missing keys: {missing}")
    if unknown:
        msg_parts.append(f"unknown keys: {unknown}")
    if msg_parts:
        raise TypeCastError(key, ", ".join(msg_parts))

    kwargs = {
        k: typecast(all_fields[k], v, key=_build_obj_key(key, k))
        for k, v in val.items()
    }
    return typ(**kwargs)


def _coerce_enum(typ: type[T_Enum], val: Primitive, *, key: str) -> T_Enum:
    if isinstance(val, str):
        try:
            return typ[val.upper()]
        except KeyError:
            pass
    elif not isinstance(val, bool):
        try:
            return typ(val)
        except ValueError:
            pass
    choices = ", ".join(m.name.lower() for m in typ)
    msg = f"{val!r} is not a valid {typ.__name__} (expected one of: {choices})"
    raise TypeCastError(key, msg)


@overload
def _coerce_type(typ: type[T], val: Primitive, *, key: str) -> T: ...
@overload
def _coerce_type(typ: type[Any], val: Primitive, *, key: str) -> Any: ...
def _coerce_type(typ: type[Any], val: Primitive, *, key: str) -> Any:
    if typ is Any:
        return val

    if is_dataclass(typ):
        return _coerce_dataclass(typ, val, key=key)

    if issubclass(typ, enum.Enum):
        return _coerce_enum(typ, val, key=key)

    # bool is an int subclass, but `timeout = true` is a mistake
    if not isinstance(val, typ) or (isinstance(val, bool) and typ is not bool):
        msg = f"Value was {type(val).__name__}, but expected {typ.__name__}"
        raise TypeCastError(key, msg)
    return val


def _coerce_dict(typ: type[dict[str, T]], val: Primitive, *, key: str) -> dict[str, T]:
    val = _coerce_type(dict, val, key=key)

    kt, vt = get_args(typ)
    assert kt is str, "non-string dict keys are not supported"
    return {k: typecast(vt, v, key=_build_obj_key(key, k)) for k, v in val.items()}


def _coerce_list(typ: type[list[T]], val: Primitive, *, key: str) -> list[T]:
    val = _coerce_type(list, val, key=key)
    (it,) = get_args(typ)
    return [typecast(it, item, key=f"{key}[{index}]") for index, item in enumerate(val)]


def _coerce_union(typ: type[T], val: Primitive, *, key: str) -> T:
    args = get_args(typ)
    if val is None and NoneType in args:
        return None  # type: ignore[return-value]

    errors = []
    for ut in args:
        if ut is NoneType:
            continue
        try:
            return typecast(ut, val, key=key)
        except TypeCastError as e:
            errors.append(f"- {e.message}")
    raise TypeCastError(key, "\nPossible issues:\n" + "\n".join(errors))


_origin_mapper = {
    dict: _coerce_dict,
    list: _coerce_list,
    Union: _coerce_union,
    UnionType: _coerce_union,
}


class Coercable(Protocol):
    def __call__(self, typ: Any, val: Primitive, *, key: str) -> Any: ...


@overload
def typecast(typ: type[T], val: Primitive, *, key: str = ...) -> T: ...
@overload
def typecast(typ: Any, val: Primitive, *, key: str = ...) -> Any: ...
def typecast(typ: Any, val: Primitive, *, key: str = "") -> Any:
    """Convert parsed TOML data into ``typ``, reporting errors by dotted key."""
    coerce: Coercable
    # check generics first: list[int] passes isinstance(..., type) on 3.10
    if (origin := get_origin(typ)) in _origin_mapper:
        coerce = _origin_mapper[origin]
    elif isinstance(typ, type):
        coerce = _coerce_type
    else:
        raise NotImplementedError(f"{typ} is not supported yet")

    return coerce(typ, val, key=key)
