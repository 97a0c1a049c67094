"""
Stealth Notes - Poseidon2 Hash over the BN254 scalar field

Poseidon2 is the commitment hash because the withdrawal circuit recomputes it:
it is native to the circuit's field, so it costs a few hundred constraints
instead of the tens of thousands a SHA-256 gadget needs.

This is the Poseidon2 instance used by Noir's standard library and
barretenberg (and by the @zkpassport/poseidon2 package):
- Field: BN254 (alt_bn128) scalar field
- Permutation: width 4, x^5 S-box, 8 full rounds, 56 partial rounds
- External layer: the 4x4 matrix [[5,7,1,3],[4,6,1,1],[1,3,5,7],[1,1,4,6]],
  also applied once before the first round
- Internal layer: state[i] * diag[i] + sum(state)
- Round constants: Grain LFSR procedure of the Poseidon2 parameter script,
  t constants per full round and one per partial round
- Sponge: rate 3, capacity 1; the capacity lane starts at len(inputs) * 2^64
  and the digest is state[0] after the final duplex

Byte strings are hashed limb-wise: every byte becomes one field element, the
way the sender and the circuit feed the secret and nullifier.
"""

from collections import deque
from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from functools import lru_cache

# BN254 scalar field modulus
BN254_SCALAR_FIELD = (
    21888242871839275222246405745257275088548364400416034343698204186575808495617
)
FIELD_BITS = 254

# Grain LFSR self-shrinking generator: 80-bit state, 160 warm-up clocks
GRAIN_STATE_BITS = 80
GRAIN_WARMUP_CLOCKS = 160
GRAIN_TAPS = (62, 51, 38, 23, 13, 0)

# Capacity lane initial value is the message length times this
LENGTH_IV_MULTIPLIER = 1 << 64

# Internal matrix diagonal for the BN254 width-4 instance
BN254_T4_INTERNAL_DIAGONAL = (
    0x10dc6e9c006ea38b04b1e03b4bd9490c0d03f98929ca1d7fb56821fd19d3b6e7,
    0x0c28145b6a44df3e0149b3d0a30b3bb599df9756d4dd9b84a86b38cfb45a740b,
    0x00544b8338791518b2c7645a50392798b21f75bb60e3596170067d00141cac15,
    0x222c01175718386f2e2e82eb122789e352e105a3b8fa852613bc534433ee428b,
)


@dataclass(frozen=True)
class Poseidon2Parameters:
    """Permutation parameters. Instances are hashable so derived tables can be cached."""

    width: int = 4
    full_rounds: int = 8
    partial_rounds: int = 56
    alpha: int = 5
    prime: int = BN254_SCALAR_FIELD
    internal_diagonal: tuple[int, ...] = BN254_T4_INTERNAL_DIAGONAL

    @property
    def rate(self) -> int:
        return self.width - 1

    @property
    def total_rounds(self) -> int:
        return self.full_rounds + self.partial_rounds


DEFAULT_PARAMETERS = Poseidon2Parameters()


def _int_to_bits(value: int, length: int) -> list[int]:
    """Big-endian bit decomposition."""
    return [(value >> (length - 1 - i)) & 1 for i in range(length)]


def _grain_bits(params: Poseidon2Parameters) -> Iterator[int]:
    """
    Yield pseudo-random bits from the Grain LFSR seeded with the parameter set.

    Seed layout (80 bits): field type (2, prime=1), S-box type (4, x^alpha=0),
    field size (12), width (12), full rounds (10), partial rounds (10), then
    thirty 1 bits.
    """
    seed = (
        _int_to_bits(1, 2)
        + _int_to_bits(0, 4)
        + _int_to_bits(FIELD_BITS, 12)
        + _int_to_bits(params.width, 12)
        + _int_to_bits(params.full_rounds, 10)
        + _int_to_bits(params.partial_rounds, 10)
        + [1] * 30
    )
    state = deque(seed, maxlen=GRAIN_STATE_BITS)

    def clock() -> int:
        bit = 0
        for tap in GRAIN_TAPS:
            bit ^= state[tap]
        state.append(bit)
        return bit

    for _ in range(GRAIN_WARMUP_CLOCKS):
        clock()

    # Self-shrinking: emit the second bit of each pair whose first bit is 1
    while True:
        selector = clock()
        candidate = clock()
        if selector:
            yield candidate


@lru_cache(maxsize=8)
def round_constants(params: Poseidon2Parameters = DEFAULT_PARAMETERS) -> tuple[tuple[int, ...], ...]:
    """
    Per-round constant rows.

    Constants are drawn by rejection sampling in round order: width values
    for a full round, one for a partial round (the rest of its row is zero).
    """
    bits = _grain_bits(params)

    def draw() -> int:
        while True:
            value = 0
            for _ in range(FIELD_BITS):
                value = (value << 1) | next(bits)
            if value < params.prime:
                return value

    half_full = params.full_rounds // 2
    rows = []
    for rnd in range(params.total_rounds):
        if half_full <= rnd < half_full + params.partial_rounds:
            rows.append((draw(),) + (0,) * (params.width - 1))
        else:
            rows.append(tuple(draw() for _ in range(params.width)))
    return tuple(rows)


def _external_layer(state: list[int], p: int) -> list[int]:
    """Multiply by [[5,7,1,3],[4,6,1,1],[1,3,5,7],[1,1,4,6]]."""
    a, b, c, d = state
    t0 = a + b
    t1 = c + d
    t2 = 2 * b + t1
    t3 = 2 * d + t0
    t4 = 4 * t1 + t3
    t5 = 4 * t0 + t2
    return [(t3 + t5) % p, t5 % p, (t2 + t4) % p, t4 % p]


class PoseidonHasher:
    """
    Poseidon2 sponge hash.

    Usage:
        hasher = PoseidonHasher()
        digest = hasher.hash([1, 2, 3])
        commitment = hasher.hash_bytes(secret, nullifier)
    """

    def __init__(self, params: Poseidon2Parameters = DEFAULT_PARAMETERS):
        if params.width != 4 or len(params.internal_diagonal) != 4:
            raise ValueError("Only the width-4 Poseidon2 instance is supported")
        self.params = params
        self._constants = round_constants(params)

    def permute(self, state: Sequence[int]) -> list[int]:
        """Apply the Poseidon2 permutation to a full-width state."""
        params = self.params
        p = params.prime
        t = params.width
        alpha = params.alpha
        diagonal = params.internal_diagonal
        half_full = params.full_rounds // 2
        partial_end = half_full + params.partial_rounds

        if len(state) != t:
            raise ValueError(f"State must have {t} elements, got {len(state)}")

        current = _external_layer([s % p for s in state], p)
        for rnd, constants in enumerate(self._constants):
            if rnd < half_full or rnd >= partial_end:
                current = [pow((x + c) % p, alpha, p) for x, c in zip(current, constants)]
                current = _external_layer(current, p)
            else:
                current[0] = pow((current[0] + constants[0]) % p, alpha, p)
                total = sum(current)
                current = [(x * d + total) % p for x, d in zip(current, diagonal)]
        return current

    def hash(self, inputs: Sequence[int]) -> int:
        """
        Hash a sequence of field elements.

        Args:
            inputs: Integers in [0, p)

        Returns:
            Field element digest

        Raises:
            ValueError: If an input is outside the field
        """
        p = self.params.prime
        rate = self.params.rate

        for value in inputs:
            if not isinstance(value, int) or not 0 <= value < p:
                raise ValueError("Poseidon inputs must be field elements in [0, p)")

        state = [0] * self.params.width
        state[rate] = (len(inputs) * LENGTH_IV_MULTIPLIER) % p

        # Absorb full chunks; the last (possibly empty or partial) chunk is
        # absorbed by the squeeze duplex.
        chunks = [inputs[i:i + rate] for i in range(0, len(inputs), rate)] or [[]]
        for chunk in chunks:
            for i, value in enumerate(chunk):
                state[i] = (state[i] + value) % p
            state = self.permute(state)

        return state[0]

    def hash_bytes(self, *chunks: bytes) -> int:
        """Hash byte strings with one field limb per byte."""
        limbs: list[int] = []
        for chunk in chunks:
            limbs.extend(bytes(chunk))
        return self.hash(limbs)


_default_hasher: PoseidonHasher | None = None


def get_hasher() -> PoseidonHasher:
    """Get the shared default-parameter hasher (tables are built once)."""
    global _default_hasher
    if _default_hasher is None:
        _default_hasher = PoseidonHasher()
    return _default_hasher


def poseidon_hash_bytes(*chunks: bytes) -> int:
    """Poseidon2 over the concatenated bytes of the chunks, byte-per-limb."""
    return get_hasher().hash_bytes(*chunks)


__all__ = [
    "BN254_SCALAR_FIELD",
    "Poseidon2Parameters",
    "DEFAULT_PARAMETERS",
    "PoseidonHasher",
    "round_constants",
    "get_hasher",
    "poseidon_hash_bytes",
]
