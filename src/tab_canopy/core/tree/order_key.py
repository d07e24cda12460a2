"""Fractional order keys for sibling ordering.

Keys are strings over a base-62 alphabet. Each key has an integer part, whose
first character encodes its length (``a``-``z`` for non-negative, ``A``-``Z``
for negative integers), followed by an optional fractional part that never
ends in ``0``. Keys sort correctly under plain byte-wise comparison, so a new
key can always be generated strictly between two existing ones.
"""

BASE_62_DIGITS = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz"

_ZERO = BASE_62_DIGITS[0]
_SMALLEST_INTEGER = "A" + _ZERO * 26


def compare(a: str, b: str) -> int:
    """Compare two keys byte-wise, never locale-aware.

    Returns:
        -1, 0 or 1.
    """
    return (a > b) - (a < b)


def _midpoint(a: str, b: str | None) -> str:
    """Return a fractional part strictly between ``a`` and ``b``.

    ``b`` of ``None`` means "no upper bound".
    """
    if b is not None and a >= b:
        msg = f"{a!r} >= {b!r}"
        raise ValueError(msg)
    if a.endswith(_ZERO) or (b is not None and b.endswith(_ZERO)):
        msg = "Fractional part has a trailing zero"
        raise ValueError(msg)

    if b:
        # Skip the common prefix
        n = 0
        while (a[n] if n < len(a) else _ZERO) == b[n]:
            n += 1
        if n > 0:
            return b[:n] + _midpoint(a[n:], b[n:])

    digit_a = BASE_62_DIGITS.index(a[0]) if a else 0
    digit_b = BASE_62_DIGITS.index(b[0]) if b is not None else len(BASE_62_DIGITS)
    if digit_b - digit_a > 1:
        return BASE_62_DIGITS[(digit_a + digit_b + 1) // 2]
    if b is not None and len(b) > 1:
        return b[0]
    return BASE_62_DIGITS[digit_a] + _midpoint(a[1:], None)


def _integer_length(head: str) -> int:
    if "a" <= head <= "z":
        return ord(head) - ord("a") + 2
    if "A" <= head <= "Z":
        return ord("Z") - ord(head) + 2
    msg = f"Invalid order key head: {head!r}"
    raise ValueError(msg)


def _integer_part(key: str) -> str:
    length = _integer_length(key[0])
    if length > len(key):
        msg = f"Invalid order key: {key!r}"
        raise ValueError(msg)
    return key[:length]


def validate(key: str) -> None:
    """Raise ValueError unless ``key`` is a well-formed order key."""
    if not key:
        msg = "Order key must not be empty"
        raise ValueError(msg)
    if key == _SMALLEST_INTEGER:
        msg = f"Invalid order key: {key!r}"
        raise ValueError(msg)
    integer = _integer_part(key)
    if key[len(integer):].endswith(_ZERO):
        msg = f"Invalid order key: {key!r}"
        raise ValueError(msg)


def _increment_integer(x: str) -> str | None:
    head, digits = x[0], list(x[1:])
    carry = True
    i = len(digits) - 1
    while carry and i >= 0:
        d = BASE_62_DIGITS.index(digits[i]) + 1
        if d == len(BASE_62_DIGITS):
            digits[i] = _ZERO
        else:
            digits[i] = BASE_62_DIGITS[d]
            carry = False
        i -= 1
    if not carry:
        return head + "".join(digits)
    if head == "Z":
        return "a" + _ZERO
    if head == "z":
        return None
    new_head = chr(ord(head) + 1)
    if new_head > "a":
        digits.append(_ZERO)
    else:
        digits.pop()
    return new_head + "".join(digits)


def _decrement_integer(x: str) -> str | None:
    head, digits = x[0], list(x[1:])
    borrow = True
    i = len(digits) - 1
    while borrow and i >= 0:
        d = BASE_62_DIGITS.index(digits[i]) - 1
        if d == -1:
            digits[i] = BASE_62_DIGITS[-1]
        else:
            digits[i] = BASE_62_DIGITS[d]
            borrow = False
        i -= 1
    if not borrow:
        return head + "".join(digits)
    if head == "a":
        return "Z" + BASE_62_DIGITS[-1]
    if head == "A":
        return None
    new_head = chr(ord(head) - 1)
    if new_head < "Z":
        digits.append(BASE_62_DIGITS[-1])
    else:
        digits.pop()
    return new_head + "".join(digits)


def generate(before: str | None = None, after: str | None = None) -> str:
    """Generate a key strictly between ``before`` and ``after``.

    Either bound may be None, meaning unbounded on that side. With no bounds
    the default key ``"a0"`` is returned.

    Raises:
        ValueError: if a bound is malformed or ``before >= after``.
    """
    if before is not None:
        validate(before)
    if after is not None:
        validate(after)
    if before is not None and after is not None and before >= after:
        msg = f"{before!r} >= {after!r}"
        raise ValueError(msg)

    if before is None:
        if after is None:
            return "a" + _ZERO
        int_b = _integer_part(after)
        frac_b = after[len(int_b):]
        if int_b == _SMALLEST_INTEGER:
            return int_b + _midpoint("", frac_b)
        if int_b < after:
            return int_b
        decremented = _decrement_integer(int_b)
        if decremented is None:
            msg = "Cannot decrement any more"
            raise ValueError(msg)
        return decremented

    int_a = _integer_part(before)
    frac_a = before[len(int_a):]
    if after is None:
        incremented = _increment_integer(int_a)
        return int_a + _midpoint(frac_a, None) if incremented is None else incremented

    int_b = _integer_part(after)
    frac_b = after[len(int_b):]
    if int_a == int_b:
        return int_a + _midpoint(frac_a, frac_b)
    incremented = _increment_integer(int_a)
    if incremented is None:
        msg = "Cannot increment any more"
        raise ValueError(msg)
    if incremented < after:
        return incremented
    return int_a + _midpoint(frac_a, None)


def generate_n(before: str | None, after: str | None, n: int) -> list[str]:
    """Generate ``n`` strictly increasing keys between ``before`` and ``after``."""
    if n <= 0:
        return []
    if n == 1:
        return [generate(before, after)]
    if after is None:
        keys = [generate(before, None)]
        for _ in range(n - 1):
            keys.append(generate(keys[-1], None))
        return keys
    if before is None:
        keys = [generate(None, after)]
        for _ in range(n - 1):
            keys.append(generate(None, keys[-1]))
        keys.reverse()
        return keys
    mid = n // 2
    middle = generate(before, after)
    return [*generate_n(before, middle, mid), middle, *generate_n(middle, after, n - mid - 1)]


def generate_n_lenient(before: str | None, after: str | None, n: int) -> list[str]:
    """Like generate_n, but tolerate bounds that are equal or out of order.

    Stored siblings can share a key (for example two tabs that both received
    the default key before being placed). In that case the upper bound is
    dropped and the keys are generated after ``before``.
    """
    if before is not None and after is not None and before >= after:
        return generate_n(before, None, n)
    return generate_n(before, after, n)

