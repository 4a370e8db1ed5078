"""
AIP Canonical JSON Encoding

Every structured value that feeds a hash or a signature is first reduced to
one byte sequence, so logically identical records always hash identically
regardless of key insertion order.

The output is byte-identical to ``JSON.stringify`` over key-sorted input,
which is what JavaScript issuers of the same commitments produce.
"""

import json
import math
from decimal import Decimal
from typing import Any, Dict, List, Union


def canonicalize(obj: Any) -> bytes:
    """
    Convert an object to canonical JSON bytes.

    Rules:
    - Object keys sorted lexicographically (Unicode code point order),
      at every nesting level
    - No whitespace between tokens (compact form)
    - UTF-8 encoding, non-ASCII characters emitted as-is
    - Arrays preserve order
    - Floats use the ECMAScript Number-to-String form: ``1.0 -> 1``,
      ``1e21 -> 1e+21``, ``1e-7 -> 1e-7``, ``-0.0 -> 0``
    - Integers are written exactly; values beyond 2**53 have no exact
      JavaScript counterpart and should be avoided in hashed records
    - NaN and infinities are rejected

    Returns:
        UTF-8 encoded bytes of canonical JSON
    """
    return canonicalize_str(obj).encode('utf-8')


def canonicalize_str(obj: Any) -> str:
    """Return canonical JSON as string."""
    return _canonicalize_value(obj)


def format_number(value: float) -> str:
    """Format a finite float the way ECMAScript ``Number.prototype.toString`` does."""
    if not math.isfinite(value):
        raise ValueError(f"Cannot canonicalize non-finite number: {value}")
    if value == 0:
        return "0"

    sign = "-" if value < 0 else ""
    # repr gives the shortest digit string that round-trips, as ECMAScript requires
    _, digit_tuple, exponent = Decimal(repr(abs(value))).as_tuple()
    digits = list(digit_tuple)
    while len(digits) > 1 and digits[-1] == 0:
        digits.pop()
        exponent += 1

    s = "".join(str(d) for d in digits)
    k = len(s)
    n = exponent + k

    if k <= n <= 21:
        return sign + s + "0" * (n - k)
    if 0 < n <= 21:
        return sign + s[:n] + "." + s[n:]
    if -6 < n <= 0:
        return sign + "0." + "0" * (-n) + s

    e = n - 1
    exp = ("+" if e >= 0 else "-") + str(abs(e))
    if k == 1:
        return f"{sign}{s}e{exp}"
    return f"{sign}{s[0]}.{s[1:]}e{exp}"


def _canonicalize_value(value: Any) -> str:
    """Recursively encode a value."""
    if value is None:
        return "null"
    elif isinstance(value, bool):
        return "true" if value else "false"
    elif isinstance(value, int):
        return int.__repr__(value)
    elif isinstance(value, float):
        return format_number(value)
    elif isinstance(value, str):
        return json.dumps(value, ensure_ascii=False)
    elif isinstance(value, dict):
        return _canonicalize_object(value)
    elif isinstance(value, (list, tuple)):
        return _canonicalize_array(value)
    else:
        raise ValueError(f"Cannot canonicalize type: {type(value)}")


def _canonicalize_object(obj: Dict[str, Any]) -> str:
    """Encode an object with keys sorted lexicographically."""
    for key in obj:
        if not isinstance(key, str):
            raise ValueError(f"Object keys must be strings, got {type(key)}")
    members = [
        json.dumps(k, ensure_ascii=False) + ":" + _canonicalize_value(obj[k])
        for k in sorted(obj)
    ]
    return "{" + ",".join(members) + "}"


def _canonicalize_array(arr: Union[List, tuple]) -> str:
    """Encode an array, preserving order."""
    return "[" + ",".join(_canonicalize_value(item) for item in arr) + "]"
