"""
Programmable transaction building and BCS encoding.

Only the subset we actually submit is covered: pure u64/bool inputs, owned and
shared object inputs, and the SplitCoins / MergeCoins / MoveCall commands.
"""

import struct
from dataclasses import dataclass, field
from typing import Optional

import base58


def uleb128(value: int) -> bytes:
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def encode_u64(value: int) -> bytes:
    return struct.pack("<Q", value)


def encode_bytes(data: bytes) -> bytes:
    return uleb128(len(data)) + data


def encode_str(value: str) -> bytes:
    return encode_bytes(value.encode())


def encode_address(address: str) -> bytes:
    """Normalize a hex address/object id (short forms like 0x6 included) to 32 bytes."""
    hx = address[2:] if address.lower().startswith("0x") else address
    if not hx or len(hx) > 64:
        raise ValueError(f"invalid address: {address!r}")
    return bytes.fromhex(hx.rjust(64, "0"))


def normalize_address(address: str) -> str:
    return "0x" + encode_address(address).hex()


def _vector(items: list[bytes]) -> bytes:
    return uleb128(len(items)) + b"".join(items)


# --- Type tags ---------------------------------------------------------------

_PRIMITIVE_TAGS = {
    "bool": 0, "u8": 1, "u64": 2, "u128": 3, "address": 4,
    "signer": 5, "u16": 8, "u32": 9, "u256": 10,
}


def _split_type_params(params: str) -> list[str]:
    parts, depth, start = [], 0, 0
    for i, ch in enumerate(params):
        if ch == "<":
            depth += 1
        elif ch == ">":
            depth -= 1
        elif ch == "," and depth == 0:
            parts.append(params[start:i].strip())
            start = i + 1
    parts.append(params[start:].strip())
    return [p for p in parts if p]


def encode_type_tag(type_str: str) -> bytes:
    """Encode a Move type like ``0xabc::meme::MEME`` or ``vector<u8>``."""
    t = type_str.strip()
    if t in _PRIMITIVE_TAGS:
        return bytes([_PRIMITIVE_TAGS[t]])
    if t.startswith("vector<") and t.endswith(">"):
        return bytes([6]) + encode_type_tag(t[len("vector<"):-1])

    params: list[str] = []
    if "<" in t:
        if not t.endswith(">"):
            raise ValueError(f"malformed type: {type_str!r}")
        lt = t.index("<")
        params = _split_type_params(t[lt + 1:-1])
        t = t[:lt]

    pieces = t.split("::")
    if len(pieces) != 3:
        raise ValueError(f"malformed struct type: {type_str!r}")
    address, module, name = pieces
    return (
        bytes([7])
        + encode_address(address)
        + encode_str(module)
        + encode_str(name)
        + _vector([encode_type_tag(p) for p in params])
    )


# --- Inputs and arguments ----------------------------------------------------

@dataclass(frozen=True)
class ObjectRef:
    object_id: str
    version: int
    digest: str  # base58

    def encode(self) -> bytes:
        return (
            encode_address(self.object_id)
            + encode_u64(self.version)
            + encode_bytes(base58.b58decode(self.digest))
        )


@dataclass(frozen=True)
class Argument:
    kind: str  # "gas", "input", "result", "nested"
    index: int = 0
    sub_index: int = 0

    def encode(self) -> bytes:
        if self.kind == "gas":
            return bytes([0])
        if self.kind == "input":
            return bytes([1]) + struct.pack("<H", self.index)
        if self.kind == "result":
            return bytes([2]) + struct.pack("<H", self.index)
        return bytes([3]) + struct.pack("<HH", self.index, self.sub_index)


GAS_COIN = Argument("gas")


@dataclass
class ProgrammableTransaction:
    """
    Builder mirroring the few PTB commands the executor needs.

    Every input/command method returns the Argument that later commands
    reference, so a buy reads top to bottom like the Move call it makes.
    """

    inputs: list[bytes] = field(default_factory=list)
    commands: list[bytes] = field(default_factory=list)

    gas = GAS_COIN

    def _add_input(self, encoded: bytes) -> Argument:
        self.inputs.append(encoded)
        return Argument("input", len(self.inputs) - 1)

    def _add_command(self, encoded: bytes) -> int:
        self.commands.append(encoded)
        return len(self.commands) - 1

    def pure_u64(self, value: int) -> Argument:
        if value < 0 or value >= 2 ** 64:
            raise ValueError(f"u64 out of range: {value}")
        return self._add_input(bytes([0]) + encode_bytes(encode_u64(value)))

    def pure_bool(self, value: bool) -> Argument:
        return self._add_input(bytes([0]) + encode_bytes(bytes([1 if value else 0])))

    def owned_object(self, ref: ObjectRef) -> Argument:
        # CallArg::Object(ObjectArg::ImmOrOwnedObject)
        return self._add_input(bytes([1, 0]) + ref.encode())

    def shared_object(self, object_id: str, initial_shared_version: int,
                      mutable: bool) -> Argument:
        return self._add_input(
            bytes([1, 1])
            + encode_address(object_id)
            + encode_u64(initial_shared_version)
            + bytes([1 if mutable else 0])
        )

    def split_coins(self, coin: Argument, amounts: list[Argument]) -> list[Argument]:
        idx = self._add_command(bytes([2]) + coin.encode() + _vector([a.encode() for a in amounts]))
        return [Argument("nested", idx, i) for i in range(len(amounts))]

    def merge_coins(self, destination: Argument, sources: list[Argument]):
        self._add_command(bytes([3]) + destination.encode() + _vector([s.encode() for s in sources]))

    def move_call(self, target: str, type_arguments: list[str],
                  arguments: list[Argument]) -> Argument:
        package, module, function = target.split("::")
        idx = self._add_command(
            bytes([0])
            + encode_address(package)
            + encode_str(module)
            + encode_str(function)
            + _vector([encode_type_tag(t) for t in type_arguments])
            + _vector([a.encode() for a in arguments])
        )
        return Argument("result", idx)

    def build(self, sender: str, gas_payment: list[ObjectRef], gas_price: int,
              gas_budget: int, gas_owner: Optional[str] = None) -> bytes:
        """Serialize as TransactionData::V1 with no expiration."""
        kind = bytes([0]) + _vector(self.inputs) + _vector(self.commands)
        gas_data = (
            _vector([ref.encode() for ref in gas_payment])
            + encode_address(gas_owner or sender)
            + encode_u64(gas_price)
            + encode_u64(gas_budget)
        )
        return bytes([0]) + kind + encode_address(sender) + gas_data + bytes([0])


def select_gas_payment(coins: list, required: int, max_objects: int = 255) -> list[ObjectRef]:
    """
    Pick the largest SUI coins until they cover ``required``.

    If the wallet can't cover it we still hand back everything we have and
    let the ledger reject the transaction.
    """
    chosen, total = [], 0
    for coin in sorted(coins, key=lambda c: c.balance, reverse=True)[:max_objects]:
        chosen.append(coin.ref)
        total += coin.balance
        if total >= required:
            break
    return chosen
