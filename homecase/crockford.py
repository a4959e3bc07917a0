"""Crockford Base32 encoding, producing and normalising lower-case identifiers."""

ALPHABET = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"

_SUBSTITUTIONS = str.maketrans({"O": "0", "I": "1", "L": "1"})


def encode_crockford_b32lc(data: bytes) -> str:
    """Encode bytes with Crockford's Base32 alphabet, in lower case, unpadded."""
    symbols: list[str] = []
    bits = 0
    accum = 0

    for byte in data:
        accum = ((accum << 8) | byte) & 0x1FFF
        bits += 8
        while bits >= 5:
            bits -= 5
            symbols.append(ALPHABET[(accum >> bits) & 0x1F])

    if bits > 0:
        symbols.append(ALPHABET[(accum << (5 - bits)) & 0x1F])

    return "".join(symbols).lower()


def normalize_crockford_b32lc(text: str) -> str:
    """Drop spaces, map O to 0 and I/L to 1, and return the result in lower case."""
    return text.replace(" ", "").upper().translate(_SUBSTITUTIONS).lower()