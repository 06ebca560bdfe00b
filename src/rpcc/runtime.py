"""
Runtime support shared by annotated API modules and by generated code.

API modules use the markers:

    from rpcc.runtime import endpoint, namespace

    @endpoint
    async def ping() -> None: ...

Generated client and server modules use the wire helpers below.

Wire format:
  request  = method id (u64, little-endian, 8 bytes) + msgpack(argument tuple)
  response = msgpack(result), or msgpack((ok, result | error text)) with the result envelope
"""
from __future__ import annotations

import functools
import inspect
import io
import struct
import typing
from typing import Any, Awaitable, BinaryIO, Callable, Union

import msgpack
import msgspec

ID_FORMAT = struct.Struct("<Q")
SCRATCH_SIZE = 2048

F = typing.TypeVar("F", bound=Callable[..., Any])
C = typing.TypeVar("C", bound=type)


def endpoint(fn: F) -> F:
    """Marks a function as part of the remote-call contract. The function is returned unchanged."""
    return fn


def namespace(cls: C) -> C:
    """Marks a class body as an inline namespace. The class is returned unchanged."""
    return cls


class RpcError(Exception):
    """Base of every error a generated stub or dispatch entry point reports."""


class UnknownMethodError(RpcError):
    def __init__(self, method_id: int):
        self.method_id = method_id
        super().__init__(f"Unknown method id: {method_id}")


class CodecError(RpcError):
    pass


class TransportError(RpcError):
    pass


class RemoteError(RpcError):
    """The remote implementation raised; carries "<Type>: <message>" from the server."""


_encoder = msgspec.msgpack.Encoder()
_envelope_decoder = msgspec.msgpack.Decoder(tuple[bool, msgspec.Raw])


@functools.lru_cache(maxsize=None)
def _cached_decoder(tp: Any) -> msgspec.msgpack.Decoder:
    return msgspec.msgpack.Decoder(tp)


def decoder_for(tp: Any) -> msgspec.msgpack.Decoder:
    try:
        return _cached_decoder(tp)
    except TypeError:
        # unhashable type expression; build one uncached
        return msgspec.msgpack.Decoder(tp)


def arguments_type(fn: Callable[..., Any]) -> Any:
    """tuple[...] of the declared parameter types, in declaration order (Any when unannotated)."""
    hints = typing.get_type_hints(fn, include_extras=True)
    types = tuple(hints.get(name, Any) for name in inspect.signature(fn).parameters)
    if not types:
        return tuple
    return tuple[types]


def arguments_decoder(fn: Callable[..., Any]) -> msgspec.msgpack.Decoder:
    return msgspec.msgpack.Decoder(arguments_type(fn))


def pack_call(method_id: int, args: tuple) -> bytes:
    buffer = bytearray(ID_FORMAT.size)
    ID_FORMAT.pack_into(buffer, 0, method_id)
    try:
        _encoder.encode_into(args, buffer, ID_FORMAT.size)
    except (msgspec.EncodeError, TypeError) as exc:
        raise CodecError(f"Failed to encode arguments: {exc}") from exc
    return bytes(buffer)


def encode_result(value: Any) -> bytes:
    try:
        return _encoder.encode(value)
    except (msgspec.EncodeError, TypeError) as exc:
        raise CodecError(f"Failed to encode result: {exc}") from exc


def encode_envelope(ok: bool, value: Any) -> bytes:
    return encode_result((ok, value))


def describe_error(exc: BaseException) -> str:
    return f"{type(exc).__name__}: {exc}"


def unpack_result(data: bytes, tp: Any, *, envelope: bool = False) -> Any:
    try:
        if not envelope:
            return decoder_for(tp).decode(data)
        ok, raw = _envelope_decoder.decode(data)
        if not ok:
            raise RemoteError(decoder_for(str).decode(raw))
        return decoder_for(tp).decode(raw)
    except msgspec.DecodeError as exc:
        raise CodecError(f"Failed to decode response: {exc}") from exc


async def perform(call: Callable[[bytes], Awaitable[bytes]], payload: bytes) -> bytes:
    """Await the transport; anything it raises that is not already an RpcError becomes a TransportError."""
    try:
        return await call(payload)
    except RpcError:
        raise
    except Exception as exc:
        raise TransportError(f"Remote call failed: {exc}") from exc


class RequestReader:
    """
    Reads one request from a binary stream through a fixed scratch window.

    Bytes are pulled one window at a time and only until the argument value is
    complete, so whatever follows it on the stream is never consumed beyond the
    last window. Each dispatch owns its reader, so the window is never shared
    between concurrent calls.
    """

    def __init__(self, stream: Union[bytes, bytearray, memoryview, BinaryIO], scratch_size: int = SCRATCH_SIZE):
        if isinstance(stream, (bytes, bytearray, memoryview)):
            stream = io.BytesIO(bytes(stream))
        self._stream = stream
        self._scratch = bytearray(scratch_size)

    def _pull(self, size: int) -> memoryview:
        view = memoryview(self._scratch)[:size]
        readinto = getattr(self._stream, "readinto", None)
        if readinto is not None:
            n = readinto(view) or 0
            return view[:n]
        chunk = self._stream.read(size) or b""
        view[: len(chunk)] = chunk
        return view[: len(chunk)]

    def read_method_id(self) -> int:
        head = bytearray()
        while len(head) < ID_FORMAT.size:
            chunk = self._pull(ID_FORMAT.size - len(head))
            if not chunk:
                raise CodecError(
                    f"Truncated request: expected a {ID_FORMAT.size}-byte method id, got {len(head)} bytes"
                )
            head += chunk
        return ID_FORMAT.unpack(head)[0]

    def read_payload(self) -> bytes:
        """Bytes of exactly one msgpack value; reading stops once that value is complete."""
        framer = msgpack.Unpacker()
        payload = bytearray()
        while True:
            chunk = self._pull(len(self._scratch))
            if not chunk:
                raise CodecError(f"Truncated request: arguments end after {len(payload)} bytes")
            payload += chunk
            framer.feed(chunk)
            try:
                framer.skip()
            except msgpack.OutOfData:
                continue
            except msgpack.UnpackException as exc:
                raise CodecError(f"Failed to decode arguments: {exc}") from exc
            return bytes(payload[: framer.tell()])

    def decode_args(self, decoder: msgspec.msgpack.Decoder) -> tuple:
        payload = self.read_payload()
        try:
            return decoder.decode(payload)
        except msgspec.DecodeError as exc:
            raise CodecError(f"Failed to decode arguments: {exc}") from exc
