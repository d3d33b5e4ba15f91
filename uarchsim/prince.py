"""The PRINCE 64-bit block cipher."""

from __future__ import annotations

_MASK64 = (1 << 64) - 1

_ROUND_CONSTANTS = (
    0x0000000000000000,
    0x13198A2E03707344,
    0xA4093822299F31D0,
    0x082EFA98EC4E6C89,
    0x452821E638D01377,
    0xBE5466CF34E90C6C,
    0x7EF84F78FD955CB1,
    0x85840851F1AC43AA,
    0xC882D32F25323C54,
    0x64A51195E0E3610D,
    0xD3B5A399CA0C2399,
    0xC0AC29B7C97C50DD,
)

ALPHA = 0xC0AC29B7C97C50DD

_SBOX = (0xB, 0xF, 0x3, 0x2, 0xA, 0xC, 0x9, 0x1, 0x6, 0x7, 0x8, 0x0, 0xE, 0x5, 0xD, 0x4)
_SBOX_INV = (0xB, 0x7, 0x3, 0x2, 0xF, 0xD, 0x8, 0x9, 0xA, 0x6, 0x4, 0x0, 0x5, 0xE, 0xC, 0x1)

# The 16-bit matrices M0 and M1, as produced by m16_matrices().
M16 = (
    (
        0x0111, 0x2220, 0x4404, 0x8088, 0x1011, 0x0222, 0x4440, 0x8808,
        0x1101, 0x2022, 0x0444, 0x8880, 0x1110, 0x2202, 0x4044, 0x0888,
    ),
    (
        0x1110, 0x2202, 0x4044, 0x0888, 0x0111, 0x2220, 0x4404, 0x8088,
        0x1011, 0x0222, 0x4440, 0x8808, 0x1101, 0x2022, 0x0444, 0x8880,
    ),
)


def bytes_to_uint64(data: bytes) -> int:
    """Big-endian conversion of eight bytes to an integer."""
    if len(data) != 8:
        raise ValueError(f"expected 8 bytes, got {len(data)}")
    return int.from_bytes(data, "big")


def uint64_to_bytes(value: int) -> bytes:
    """Big-endian conversion of a 64-bit integer to eight bytes."""
    return (value & _MASK64).to_bytes(8, "big")


def k0_to_k0_prime(k0: int) -> int:
    """Derive K0' from K0."""
    k0_ror1 = ((k0 >> 1) | (k0 << 63)) & _MASK64
    return k0_ror1 ^ (k0 >> 63)


def round_constant(round_index: int) -> int:
    return _ROUND_CONSTANTS[round_index]


def sbox(nibble: int) -> int:
    """The 4-bit S-box; only the low four bits of the input are used."""
    return _SBOX[nibble & 0xF]


def sbox_inv(nibble: int) -> int:
    """The inverse 4-bit S-box; only the low four bits of the input are used."""
    return _SBOX_INV[nibble & 0xF]


def _apply_nibbles(value: int, table: tuple[int, ...]) -> int:
    result = 0
    for shift in range(0, 64, 4):
        result |= table[(value >> shift) & 0xF] << shift
    return result


def s_layer(value: int) -> int:
    return _apply_nibbles(value, _SBOX)


def s_inv_layer(value: int) -> int:
    return _apply_nibbles(value, _SBOX_INV)


def _gf2_mat_mult16(value: int, matrix: tuple[int, ...] | list[int]) -> int:
    result = 0
    for bit, row in enumerate(matrix):
        if (value >> bit) & 1:
            result ^= row
    return result


def m16_matrices() -> tuple[list[int], list[int]]:
    """Build the 16-bit matrices M0 and M1 from the 4-bit blocks."""
    m4 = (
        (0x0, 0x2, 0x4, 0x8),
        (0x1, 0x0, 0x4, 0x8),
        (0x1, 0x2, 0x0, 0x8),
        (0x1, 0x2, 0x4, 0x0),
    )
    m0: list[int] = []
    m1: list[int] = []
    for i in range(16):
        base, col = divmod(i, 4)
        row = (
            (m4[(base + 3) % 4][col] << 8)
            | (m4[(base + 2) % 4][col] << 4)
            | m4[(base + 1) % 4][col]
            | (m4[base % 4][col] << 12)
        )
        m0.append(row)
        m1.append((row >> 12) | (0xFFFF & (row << 4)))
    return m0, m1


def m_prime_layer(value: int) -> int:
    m0, m1 = M16
    chunks = (
        _gf2_mat_mult16(value, m0),
        _gf2_mat_mult16(value >> 16, m1),
        _gf2_mat_mult16(value >> 32, m1),
        _gf2_mat_mult16(value >> 48, m0),
    )
    return sum(chunk << (16 * index) for index, chunk in enumerate(chunks))


def shift_rows(value: int, inverse: bool) -> int:
    """ShiftRows, or its inverse when ``inverse`` is true."""
    row_mask = 0xF000F000F000F000
    result = value & row_mask
    for i in range(1, 4):
        row = value & (row_mask >> (4 * i))
        shift = i * 16 if inverse else 64 - i * 16
        result |= ((row >> shift) | (row << (64 - shift))) & _MASK64
    return result


def m_layer(value: int) -> int:
    return shift_rows(m_prime_layer(value), False)


def m_inv_layer(value: int) -> int:
    return m_prime_layer(shift_rows(value, True))


def core(core_input: int, k1: int) -> int:
    """The twelve-round PRINCE core."""
    state = core_input ^ k1 ^ round_constant(0)
    for rnd in range(1, 6):
        state = m_layer(s_layer(state)) ^ k1 ^ round_constant(rnd)
    state = s_inv_layer(m_prime_layer(s_layer(state)))
    for rnd in range(6, 11):
        state = s_inv_layer(m_inv_layer(state ^ k1 ^ round_constant(rnd)))
    return state ^ k1 ^ round_constant(11)


def enc_dec_uint64(value: int, k0: int, k1: int, decrypt: bool) -> int:
    """Encrypt or decrypt one block; the keys are the same for both directions."""
    if decrypt:
        k1 ^= ALPHA
    k0_prime = k0_to_k0_prime(k0)
    if decrypt:
        k0, k0_prime = k0_prime, k0
    return core(value ^ k0, k1) ^ k0_prime


def _crypt(block: bytes, key: bytes, decrypting: bool) -> bytes:
    if len(key) != 16:
        raise ValueError(f"expected a 16-byte key, got {len(key)}")
    value = bytes_to_uint64(block)
    k0 = bytes_to_uint64(key[:8])
    k1 = bytes_to_uint64(key[8:])
    return uint64_to_bytes(enc_dec_uint64(value, k0, k1, decrypting))


def encrypt(block: bytes, key: bytes) -> bytes:
    """Encrypt an 8-byte block; the key holds K0 then K1."""
    return _crypt(block, key, False)


def decrypt(block: bytes, key: bytes) -> bytes:
    """Decrypt an 8-byte block; the key holds K0 then K1."""
    return _crypt(block, key, True)