"""
CrossGov Merkle Tree

Binary Keccak-256 tree over pre-hashed leaves, matching the tree the Chain B
verifier reconstructs:

  * leaves are used as given (no re-hashing) and in the order given;
  * parents are keccak256(left ‖ right) with the pair kept in position order;
  * an odd node at the end of a layer is promoted unchanged to the next layer;
  * a single-leaf tree has the leaf itself as root.

Multiproofs follow the flag convention: one flag per hash operation, True
when both children are already known, False when the sibling is taken from
the proof. Promoted nodes consume no flag, so

    len(flags) == len(leaves) + len(proof) - 1
"""

from typing import Dict, Iterable, List, Sequence, Tuple, Union

from ..exceptions import ValidationError
from .hashing import keccak256


def hash_pair(left: bytes, right: bytes) -> bytes:
    """Parent node of two ordered children."""
    return keccak256(left + right)


def layer_sizes(leaf_count: int) -> List[int]:
    """Sizes of every layer from the leaves up to the root."""
    if leaf_count < 1:
        raise ValidationError("Merkle tree needs at least one leaf")
    sizes = [leaf_count]
    while sizes[-1] > 1:
        sizes.append((sizes[-1] + 1) // 2)
    return sizes


def _as_node(value: Union[bytes, str]) -> bytes:
    if isinstance(value, str):
        value = bytes.fromhex(value[2:] if value.startswith('0x') else value)
    value = bytes(value)
    if len(value) != 32:
        raise ValidationError(f"Merkle node must be 32 bytes, got {len(value)}")
    return value


class MerkleTree:
    """Tree over an ordered list of 32-byte leaves."""

    def __init__(self, leaves: Sequence[Union[bytes, str]]):
        if not leaves:
            raise ValidationError("Merkle tree needs at least one leaf")
        self._layers: List[List[bytes]] = [[_as_node(leaf) for leaf in leaves]]
        while len(self._layers[-1]) > 1:
            current = self._layers[-1]
            parents = []
            for i in range(0, len(current), 2):
                if i + 1 < len(current):
                    parents.append(hash_pair(current[i], current[i + 1]))
                else:
                    parents.append(current[i])
            self._layers.append(parents)

    @property
    def leaves(self) -> List[bytes]:
        return list(self._layers[0])

    @property
    def leaf_count(self) -> int:
        return len(self._layers[0])

    @property
    def layers(self) -> List[List[bytes]]:
        return [list(layer) for layer in self._layers]

    @property
    def root(self) -> bytes:
        return self._layers[-1][0]

    @property
    def root_hex(self) -> str:
        return '0x' + self.root.hex()

    def index_of(self, leaf: Union[bytes, str]) -> int:
        """Position of a leaf, -1 if absent."""
        node = _as_node(leaf)
        try:
            return self._layers[0].index(node)
        except ValueError:
            return -1

    def _walk(self, indices: Iterable[int]) -> Tuple[List[bytes], List[bool]]:
        known = sorted(set(indices))
        if not known:
            raise ValidationError("Multiproof needs at least one leaf index")
        if known[0] < 0 or known[-1] >= self.leaf_count:
            raise ValidationError(f"Leaf index out of range 0..{self.leaf_count - 1}")

        proof: List[bytes] = []
        flags: List[bool] = []
        for layer in self._layers[:-1]:
            parents = []
            j = 0
            while j < len(known):
                index = known[j]
                sibling = index ^ 1
                if sibling >= len(layer):
                    # promoted, no hash at this level
                    j += 1
                elif j + 1 < len(known) and known[j + 1] == sibling:
                    flags.append(True)
                    j += 2
                else:
                    proof.append(layer[sibling])
                    flags.append(False)
                    j += 1
                parents.append(index // 2)
            known = parents
        return proof, flags

    def get_multiproof(self, indices: Iterable[int]) -> List[bytes]:
        """Sibling nodes needed to prove the leaves at `indices`."""
        return self._walk(indices)[0]

    def get_proof_flags(self, indices: Iterable[int], proof: Sequence[bytes]) -> List[bool]:
        """
        Flags matching `get_multiproof(indices)`.

        Raises:
            ValidationError: if `proof` is not the proof for these indices
        """
        expected, flags = self._walk(indices)
        if [_as_node(p) for p in proof] != expected:
            raise ValidationError("Proof does not belong to the given leaf indices")
        return flags

    def multiproof(self, indices: Iterable[int]) -> Tuple[List[bytes], List[bool]]:
        return self._walk(indices)

    def __len__(self) -> int:
        return self.leaf_count

    def __repr__(self) -> str:
        return f"<MerkleTree leaves={self.leaf_count} root={self.root_hex}>"


def verify_multiproof(
    root: Union[bytes, str],
    leaf_count: int,
    indices: Sequence[int],
    leaves: Sequence[Union[bytes, str]],
    proof: Sequence[Union[bytes, str]],
    flags: Sequence[bool],
) -> bool:
    """
    Recompute the root from a multiproof.

    Position aware: `indices` are the leaf positions in the full tree and
    `leaves` the matching leaf hashes. Every flag must agree with the shape
    of the tree and every proof element must be consumed.
    """
    if len(indices) != len(leaves) or not indices:
        return False
    if len(flags) != len(leaves) + len(proof) - 1:
        return False

    nodes: Dict[int, bytes] = {}
    for index, leaf in zip(indices, leaves):
        if index in nodes or not 0 <= index < leaf_count:
            return False
        nodes[index] = _as_node(leaf)

    proof_nodes = [_as_node(p) for p in proof]
    p = f = 0
    for size in layer_sizes(leaf_count)[:-1]:
        known = sorted(nodes)
        parents: Dict[int, bytes] = {}
        j = 0
        while j < len(known):
            index = known[j]
            sibling = index ^ 1
            if sibling >= size:
                parents[index // 2] = nodes[index]
                j += 1
                continue
            if f >= len(flags):
                return False
            flag = flags[f]
            f += 1
            if j + 1 < len(known) and known[j + 1] == sibling:
                if not flag:
                    return False
                parents[index // 2] = hash_pair(nodes[index], nodes[sibling])
                j += 2
            else:
                if flag or p >= len(proof_nodes):
                    return False
                other = proof_nodes[p]
                p += 1
                if index % 2 == 0:
                    parents[index // 2] = hash_pair(nodes[index], other)
                else:
                    parents[index // 2] = hash_pair(other, nodes[index])
                j += 1
        nodes = parents

    return f == len(flags) and p == len(proof_nodes) and nodes.get(0) == _as_node(root)
