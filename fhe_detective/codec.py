"""
Confidential Value Codec
========================

Wraps a credibility score (0-100) into an opaque token and back.

Token format (byte-compatible with records written by the web client):

    "FHE-" + base64(<number as JavaScript prints it>)

e.g. 60 -> "FHE-NjA=", 72.5 -> "FHE-NzIuNQ=="

This is reversible obfuscation, NOT encryption: anyone holding a token can
decode it. The ValueCodec interface isolates the scheme so a real
homomorphic/threshold scheme can replace Base64Codec without touching the
repository, analyzer or authorizer.

Comparison semantics: two values are "contradictory" when they are CLOSE,
i.e. abs(a - b) < tolerance. Equal values are therefore contradictory.
"""

import base64
import binascii
import math
from abc import ABC, abstractmethod
from typing import Union

from .errors import DecodeError


TOKEN_MARKER = "FHE-"
DEFAULT_TOLERANCE = 10.0

Number = Union[int, float]
TokenLike = Union[str, int, float]


def js_number_string(value: Number) -> str:
    """
    Format a number the way JavaScript's Number.prototype.toString does
    for the values we store: integral values carry no decimal point.
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"Not a number: {value!r}")
    if not math.isfinite(value):
        raise ValueError(f"Not a finite number: {value!r}")

    if float(value).is_integer() and abs(value) < 1e21:
        return str(int(value))

    text = repr(float(value))
    if "e" in text:
        mantissa, exponent = text.split("e")
        sign = "-" if exponent.startswith("-") else "+"
        text = f"{mantissa}e{sign}{int(exponent.lstrip('+-'))}"
    return text


def parse_number(text: str) -> float:
    """Strict numeric parse. Raises DecodeError on anything but a finite number."""
    try:
        value = float(text.strip())
    except (ValueError, AttributeError):
        raise DecodeError(f"Not a number: {text!r}") from None
    if not math.isfinite(value):
        raise DecodeError(f"Not a finite number: {text!r}")
    return value


def values_contradict(a: float, b: float, tolerance: float = DEFAULT_TOLERANCE) -> bool:
    """The contradiction predicate on plaintext values"""
    return abs(a - b) < tolerance


class ValueCodec(ABC):
    """Encode/decode/compare contract for confidential values"""

    @abstractmethod
    def encode(self, plaintext: Number) -> str:
        """Wrap a plaintext number into a token"""
        pass

    @abstractmethod
    def decode(self, token: TokenLike) -> float:
        """Recover the plaintext. Raises DecodeError."""
        pass

    def is_contradictory(
        self,
        token_a: TokenLike,
        token_b: TokenLike,
        tolerance: float = DEFAULT_TOLERANCE,
    ) -> bool:
        """True iff the two hidden values lie within tolerance of each other"""
        return values_contradict(self.decode(token_a), self.decode(token_b), tolerance)

    def credibility_difference(self, token_a: TokenLike, token_b: TokenLike) -> float:
        return abs(self.decode(token_a) - self.decode(token_b))


class Base64Codec(ValueCodec):
    """Marker-prefixed base64 text encoding (placeholder for real FHE)"""

    def encode(self, plaintext: Number) -> str:
        payload = js_number_string(plaintext).encode("utf-8")
        return TOKEN_MARKER + base64.b64encode(payload).decode("ascii")

    def decode(self, token: TokenLike) -> float:
        if isinstance(token, (int, float)) and not isinstance(token, bool):
            if not math.isfinite(token):
                raise DecodeError(f"Not a finite number: {token!r}")
            return float(token)
        if not isinstance(token, str):
            raise DecodeError(f"Unsupported token type: {type(token).__name__}")

        if not token.startswith(TOKEN_MARKER):
            # Unmarked numeric literal (legacy records)
            return parse_number(token)

        try:
            payload = base64.b64decode(token[len(TOKEN_MARKER):], validate=True)
            text = payload.decode("utf-8")
        except (binascii.Error, ValueError) as e:
            raise DecodeError(f"Invalid token payload: {e}") from e
        return parse_number(text)


_codec = None


def get_codec() -> ValueCodec:
    """Get singleton codec instance"""
    global _codec
    if _codec is None:
        _codec = Base64Codec()
    return _codec
