"""
Governance Actions

A passed proposal executes exactly one action on Chain A, packed the way
the GovernanceExecutor decodes it:

    actionData     = abi.encode(address target, uint256 value, bytes data)
    actionDataHash = keccak256(actionData)

The relayer resolves the payload for a proposal from an ActionRegistry,
typically loaded from a JSON file:

    {
      "7": {"target": "0x…", "value": "0", "fnSig": "updateUnbondingPeriod(uint256)", "args": ["200"]},
      "8": {"target": "0x…", "value": "0", "data": "0x7da153df…"}
    }
"""

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple, Union

from eth_abi import encode as abi_encode
from eth_utils import function_signature_to_4byte_selector

from ..crypto.address import bytes_to_hex, hex_to_bytes, to_checksum_address
from ..crypto.hashing import keccak256
from ..exceptions import ActionNotConfigured, ValidationError
from ..logger import get_logger

logger = get_logger(__name__)


def split_signature(signature: str) -> Tuple[str, List[str]]:
    """
    "transfer(address,uint256)" → ("transfer", ["address", "uint256"]).
    Tuple types keep their parentheses.
    """
    signature = signature.replace(" ", "")
    if "(" not in signature or not signature.endswith(")"):
        raise ValidationError(f"Invalid function signature: {signature!r}")
    name, params = signature[:signature.index("(")], signature[signature.index("(") + 1:-1]
    if not name:
        raise ValidationError(f"Invalid function signature: {signature!r}")

    types, depth, current = [], 0, ""
    for char in params:
        if char == "," and depth == 0:
            types.append(current)
            current = ""
            continue
        depth += (char == "(") - (char == ")")
        current += char
    if current:
        types.append(current)
    return name, types


def function_selector(signature: str) -> bytes:
    name, types = split_signature(signature)
    return function_signature_to_4byte_selector(f"{name}({','.join(types)})")


def _coerce(abi_type: str, value: Any) -> Any:
    """JSON-friendly argument → eth_abi value."""
    if abi_type.endswith("]"):
        inner = abi_type[:abi_type.rindex("[")]
        return [_coerce(inner, v) for v in value]
    if abi_type.startswith(("uint", "int")):
        return int(value, 0) if isinstance(value, str) else int(value)
    if abi_type == "address":
        return to_checksum_address(value)
    if abi_type == "bool":
        if isinstance(value, str):
            return value.strip().lower() == "true"
        return bool(value)
    if abi_type.startswith("bytes"):
        return hex_to_bytes(value) if isinstance(value, str) else bytes(value)
    return value


def encode_function_call(signature: str, args: Sequence[Any] = ()) -> bytes:
    """Calldata: 4-byte selector followed by the ABI-encoded arguments."""
    _, types = split_signature(signature)
    if len(types) != len(args):
        raise ValidationError(
            f"{signature} takes {len(types)} arguments, got {len(args)}"
        )
    values = [_coerce(t, a) for t, a in zip(types, args)]
    return function_selector(signature) + abi_encode(types, values)


@dataclass(frozen=True)
class ActionSpec:
    """The single (target, value, data) triple a proposal executes."""
    target: str
    value: int
    data: bytes

    def encode(self) -> bytes:
        return abi_encode(
            ["address", "uint256", "bytes"],
            [to_checksum_address(self.target), self.value, self.data],
        )

    def hash(self) -> str:
        return bytes_to_hex(keccak256(self.encode()))

    @classmethod
    def from_call(cls, target: str, signature: str, args: Sequence[Any] = (), value: int = 0) -> 'ActionSpec':
        return cls(to_checksum_address(target), int(value), encode_function_call(signature, args))

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'ActionSpec':
        target = d.get("target") or d.get("chainA_target")
        if not target:
            raise ValidationError("Action needs a target address")
        value = d.get("value", 0)
        value = int(value, 0) if isinstance(value, str) else int(value)
        if "data" in d:
            return cls(to_checksum_address(target), value, hex_to_bytes(d["data"]))
        if "fnSig" in d:
            return cls.from_call(target, d["fnSig"], d.get("args", []), value)
        raise ValidationError("Action needs either raw 'data' or 'fnSig' + 'args'")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "target": to_checksum_address(self.target),
            "value": str(self.value),
            "data": bytes_to_hex(self.data),
            "actionData": bytes_to_hex(self.encode()),
            "actionDataHash": self.hash(),
        }


class ActionRegistry:
    """Proposal id → ActionSpec."""

    def __init__(self, actions: Optional[Dict[int, ActionSpec]] = None,
                 source: Optional[Path] = None):
        self._actions: Dict[int, ActionSpec] = dict(actions or {})
        self.source = source

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> 'ActionRegistry':
        actions = {}
        for key, spec in raw.items():
            try:
                actions[int(key)] = ActionSpec.from_dict(spec)
            except (ValueError, TypeError) as exc:
                raise ValidationError(f"Invalid action for proposal {key}: {exc}") from exc
        return cls(actions)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> 'ActionRegistry':
        path = Path(path)
        registry = cls(source=path)
        registry.reload()
        return registry

    def reload(self) -> None:
        """
        Re-read the actions file this registry was loaded from.

        Raises:
            ValidationError: the file holds an invalid action
            ValueError: the file is not valid JSON
        """
        if self.source is None:
            return
        if not self.source.exists():
            logger.warning(f"Actions file {self.source} not found; no actions configured")
            return
        with open(self.source, "r", encoding="utf-8") as f:
            loaded = self.from_dict(json.load(f))
        self._actions = loaded._actions
        logger.info(f"Loaded {len(self)} action(s) from {self.source}")

    def register(self, proposal_id: int, spec: ActionSpec) -> None:
        self._actions[proposal_id] = spec

    def get(self, proposal_id: int) -> ActionSpec:
        spec = self._actions.get(proposal_id)
        if spec is None:
            raise ActionNotConfigured(f"No action configured for proposal #{proposal_id}")
        return spec

    def __contains__(self, proposal_id: int) -> bool:
        return proposal_id in self._actions

    def __len__(self) -> int:
        return len(self._actions)

    def __iter__(self) -> Iterator[int]:
        return iter(sorted(self._actions))
