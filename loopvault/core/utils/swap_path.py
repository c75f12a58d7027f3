from __future__ import annotations

from dataclasses import dataclass

from eth_abi.packed import encode_packed
from eth_utils import is_address, to_checksum_address

from loopvault.core.constants.base import MAX_UINT24
from loopvault.core.errors import ValidationError

ADDRESS_SIZE = 20
FEE_SIZE = 3
HOP_SIZE = ADDRESS_SIZE + FEE_SIZE


@dataclass(frozen=True)
class SwapPath:
    """Uniswap v3 style route: ``token0 | fee0 | token1 | fee1 | token2 ...``.

    For exact-output swaps the route is written from the output token back to
    the input token, so the first token is what the caller receives.
    """

    tokens: tuple[str, ...]
    fees: tuple[int, ...]

    def __post_init__(self) -> None:
        tokens = tuple(self.tokens)
        fees = tuple(int(f) for f in self.fees)
        if len(tokens) < 2:
            raise ValidationError("swap path needs at least two tokens")
        if len(fees) != len(tokens) - 1:
            raise ValidationError(
                f"swap path has {len(tokens)} tokens but {len(fees)} fee tiers"
            )
        for token in tokens:
            if not is_address(token):
                raise ValidationError(f"swap path token is not an address: {token!r}")
        for fee in fees:
            if fee < 0 or fee > MAX_UINT24:
                raise ValidationError(f"fee tier out of uint24 range: {fee}")
        object.__setattr__(self, "tokens", tuple(to_checksum_address(t) for t in tokens))
        object.__setattr__(self, "fees", fees)

    @classmethod
    def single_hop(cls, token_a: str, fee: int, token_b: str) -> SwapPath:
        return cls(tokens=(token_a, token_b), fees=(fee,))

    @classmethod
    def decode(cls, raw: bytes | str) -> SwapPath:
        if isinstance(raw, str):
            data = bytes.fromhex(raw[2:] if raw.startswith("0x") else raw)
        else:
            data = bytes(raw)
        if len(data) < ADDRESS_SIZE + HOP_SIZE or (len(data) - ADDRESS_SIZE) % HOP_SIZE:
            raise ValidationError(f"malformed swap path of {len(data)} bytes")
        tokens = [to_checksum_address("0x" + data[:ADDRESS_SIZE].hex())]
        fees: list[int] = []
        offset = ADDRESS_SIZE
        while offset < len(data):
            fees.append(int.from_bytes(data[offset : offset + FEE_SIZE], "big"))
            start = offset + FEE_SIZE
            tokens.append(to_checksum_address("0x" + data[start : start + ADDRESS_SIZE].hex()))
            offset += HOP_SIZE
        return cls(tokens=tuple(tokens), fees=tuple(fees))

    def encode(self) -> bytes:
        types: list[str] = []
        values: list[object] = []
        for i, token in enumerate(self.tokens):
            types.append("address")
            values.append(token)
            if i < len(self.fees):
                types.append("uint24")
                values.append(self.fees[i])
        return encode_packed(types, values)

    @property
    def first(self) -> str:
        return self.tokens[0]

    @property
    def last(self) -> str:
        return self.tokens[-1]

    def hops(self) -> list[tuple[str, int, str]]:
        return [
            (self.tokens[i], self.fees[i], self.tokens[i + 1])
            for i in range(len(self.fees))
        ]

    def reversed(self) -> SwapPath:
        return SwapPath(tokens=self.tokens[::-1], fees=self.fees[::-1])


def validate_exact_output_path(path: SwapPath, *, output_token: str, input_token: str) -> None:
    """Reject a route that does not start at ``output_token`` and end at ``input_token``."""
    if path.first != to_checksum_address(output_token):
        raise ValidationError(
            f"swap path must start with {to_checksum_address(output_token)}, got {path.first}"
        )
    if path.last != to_checksum_address(input_token):
        raise ValidationError(
            f"swap path must end with {to_checksum_address(input_token)}, got {path.last}"
        )
