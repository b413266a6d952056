"""msgspec JSON helpers that understand :class:`pathlib.Path`."""

from __future__ import annotations

import typing as typ
from pathlib import Path

import msgspec


def _enc_hook(obj: object) -> object:
    if isinstance(obj, Path):
        return str(obj)
    raise NotImplementedError(type(obj).__name__)


def _dec_hook(type_hint: typ.Any, obj: object) -> object:  # noqa: ANN401 - msgspec hook
    if type_hint is Path and isinstance(obj, str):
        return Path(obj)
    message = f"unsupported type {type_hint!r}"
    raise NotImplementedError(message)


JSON_ENCODER = msgspec.json.Encoder(enc_hook=_enc_hook)


def dumps_json(obj: object) -> bytes:
    """Serialise ``obj`` to compact JSON bytes."""
    return JSON_ENCODER.encode(obj)


def loads_json[T](buf: bytes | str, *, target_type: type[T]) -> T:
    """Decode ``buf`` into ``target_type``.

    Raises
    ------
    msgspec.DecodeError
        If ``buf`` is not valid JSON or does not match ``target_type``.

    """
    decoder = msgspec.json.Decoder(type=target_type, dec_hook=_dec_hook)
    return decoder.decode(buf)
