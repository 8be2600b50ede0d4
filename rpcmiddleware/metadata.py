"""Convenience wrapper around call metadata stored in contexts.

A typical use copies selected incoming headers into a new outgoing context::

    md = extract_incoming(server_ctx).clone(":authorization", ":custom")
    client_ctx = md.set("x-client-header", "2").set("x-another", "3").to_outgoing(ctx)
"""

from __future__ import annotations

import base64

from rpcmiddleware.core import Context

_BIN_SUFFIX = "-bin"
_INCOMING_KEY = object()
_OUTGOING_KEY = object()


def _encode_key_value(key: str, value: str | bytes) -> tuple[str, str]:
    key = key.lower()
    if key.endswith(_BIN_SUFFIX):
        raw = value if isinstance(value, bytes) else value.encode()
        return key, base64.b64encode(raw).decode("ascii")
    if isinstance(value, bytes):
        value = value.decode()
    return key, value


class MD(dict):
    """Metadata: lower-case keys mapped to lists of string values."""

    @classmethod
    def from_pairs(cls, *args: str) -> MD:
        """Build metadata from alternating keys and values; keys are lower-cased."""
        if len(args) % 2:
            raise ValueError(f"from_pairs got an odd number of arguments: {len(args)}")
        md = cls()
        for key, value in zip(args[::2], args[1::2]):
            md.setdefault(key.lower(), []).append(value)
        return md

    def clone(self, *args: str) -> MD:
        """Deep-copy the metadata, keeping only the given keys (case-insensitive) if any."""
        wanted = {key.casefold() for key in args}
        return MD(
            (key, list(values))
            for key, values in self.items()
            if not wanted or key.casefold() in wanted
        )

    def to_outgoing(self, ctx: Context) -> Context:
        """Return a child context carrying this metadata for outgoing calls."""
        return ctx.with_value(_OUTGOING_KEY, self)

    def to_incoming(self, ctx: Context) -> Context:
        """Return a child context carrying this metadata as received by a server."""
        return ctx.with_value(_INCOMING_KEY, self)

    def get(self, key: str) -> str:  # type: ignore[override]
        """Return the first value for ``key``, or an empty string."""
        encoded, _ = _encode_key_value(key, "")
        values = super().get(encoded)
        return values[0] if values else ""

    def delete(self, key: str) -> MD:
        """Remove every value for ``key``."""
        encoded, _ = _encode_key_value(key, "")
        self.pop(encoded, None)
        return self

    def set(self, key: str, value: str | bytes) -> MD:
        """Replace every value for ``key`` with ``value``."""
        encoded_key, encoded_value = _encode_key_value(key, value)
        self[encoded_key] = [encoded_value]
        return self

    def add(self, key: str, value: str | bytes) -> MD:
        """Append ``value`` to the values for ``key``."""
        encoded_key, encoded_value = _encode_key_value(key, value)
        self.setdefault(encoded_key, []).append(encoded_value)
        return self


def _extract(ctx: Context, slot: object) -> MD:
    md = ctx.value(slot)
    if md is None:
        return MD()
    return MD((key.lower(), list(values)) for key, values in md.items())


def extract_incoming(ctx: Context) -> MD:
    """Return a copy of the incoming metadata in ``ctx``, or empty metadata."""
    return _extract(ctx, _INCOMING_KEY)


def extract_outgoing(ctx: Context) -> MD:
    """Return a copy of the outgoing metadata in ``ctx``, or empty metadata."""
    return _extract(ctx, _OUTGOING_KEY)