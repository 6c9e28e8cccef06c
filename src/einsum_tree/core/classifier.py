"""CMNK dimension classification for a single binary contraction.

A contraction ``node = left x right`` sums over the labels shared by both
operands but absent from ``node``. Every label is sorted into one of four
kinds (C: in all three, M: left-only batch, N: right-only batch, K:
contracted) and each kind is split into a *primitive* part handled by an
inner blocked kernel and a *loop* part iterated around it.

Primitive capacity is filled in the fixed order C, M, K, N. Labels are
scanned from the fastest varying (rightmost) position outwards and the
acceptance pointer only ever moves forward, so once a kind has been passed
its remaining labels can only become loop dimensions.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Dict, List, Optional, Sequence, Set

from .exceptions import ClassificationError

logger = logging.getLogger(__name__)

PRIMITIVE_KEYS = ("cb", "mb", "nb", "kb")
LOOP_KEYS = ("bc", "bm", "bn", "bk")
KIND_KEYS = {
    "c": ("cb", "bc"),
    "m": ("mb", "bm"),
    "n": ("nb", "bn"),
    "k": ("kb", "bk"),
}


class Acceptance(IntEnum):
    CB = 0
    MB = 1
    KB = 2
    NB = 3
    LOOP = 4

    def successor(self) -> "Acceptance":
        if self is Acceptance.LOOP:
            return self
        return Acceptance(self + 1)

    @property
    def key(self) -> str:
        return self.name.lower()


class Phase(Enum):
    INITIAL = "initial"
    PRIMITIVE = "primitive"
    LOOP = "loop"


def _empty(keys: Sequence[str]) -> Dict[str, List[str]]:
    return {key: [] for key in keys}


@dataclass
class DimensionTypes:
    primitive: Dict[str, List[str]] = field(default_factory=lambda: _empty(PRIMITIVE_KEYS))
    loop: Dict[str, List[str]] = field(default_factory=lambda: _empty(LOOP_KEYS))

    def dims(self, kind: str) -> List[str]:
        """Primitive followed by loop labels of one CMNK kind (``"c"``, ``"m"``, ``"n"``, ``"k"``)."""
        primitive_key, loop_key = KIND_KEYS[kind.lower()]
        return list(self.primitive[primitive_key]) + list(self.loop[loop_key])

    def kind_of(self, label: str) -> Optional[str]:
        for kind, (primitive_key, loop_key) in KIND_KEYS.items():
            if label in self.primitive[primitive_key] or label in self.loop[loop_key]:
                return kind
        return None

    def labels(self) -> List[str]:
        collected: List[str] = []
        for key in PRIMITIVE_KEYS:
            collected.extend(self.primitive[key])
        for key in LOOP_KEYS:
            collected.extend(self.loop[key])
        return collected

    def is_empty(self) -> bool:
        return not self.labels()

    def to_dict(self) -> Dict[str, Dict[str, List[str]]]:
        return {
            "primitive": {key: list(self.primitive[key]) for key in PRIMITIVE_KEYS},
            "loop": {key: list(self.loop[key]) for key in LOOP_KEYS},
        }


# Loop category used for each primitive kind when it is encountered again.
_LOOP_OF = {
    Acceptance.CB: "bc",
    Acceptance.MB: "bm",
    Acceptance.NB: "bn",
    Acceptance.KB: "bk",
}
_LOOKUP_ORDER = (Acceptance.CB, Acceptance.MB, Acceptance.NB, Acceptance.KB)


class DimensionClassifier:
    def __init__(self, node: Sequence[str], left: Sequence[str], right: Sequence[str]):
        self.original = (list(node or []), list(left or []), list(right or []))
        # Worklists for the batch pass; trailing elements are consumed.
        self.node: List[str] = list(node or [])
        self.left: List[str] = list(left or [])
        self.right: List[str] = list(right or [])
        # Untouched operands for the contracted pass.
        self.left_k: List[str] = list(left or [])
        self.right_k: List[str] = list(right or [])

        self.phase = Phase.INITIAL
        self.accepting = Acceptance.CB
        self.result = DimensionTypes()
        self.processed: Set[str] = set()

    # ----------------------------------------------------------------- driver
    def classify(self) -> DimensionTypes:
        self._classify_batch_dims()
        self._classify_contracted_dims()
        for labels in self.result.primitive.values():
            labels.reverse()
        for labels in self.result.loop.values():
            labels.reverse()
        return self.result

    # ------------------------------------------------------------ transitions
    def _accepts(self, kind: Acceptance) -> bool:
        return self.accepting <= kind

    def _spill_to_loop(self) -> None:
        if self.phase is Phase.INITIAL:
            self.accepting = Acceptance.KB
        elif self.phase is Phase.PRIMITIVE:
            self.accepting = self.accepting.successor()
        self.phase = Phase.LOOP

    def _record(self, bucket: Dict[str, List[str]], key: str, label: str) -> None:
        if not label:
            raise self._error(f"Contraction element {label!r} is undefined or empty")
        if label in self.processed:
            raise self._error(f"Index {label} already processed")
        bucket[key].append(label)
        self.processed.add(label)

    def _take_primitive(self, kind: Acceptance, label: str, *operands: List[str]) -> None:
        self.accepting = kind
        self.phase = Phase.PRIMITIVE
        self._record(self.result.primitive, kind.key, label)
        self._consume(label, *operands)

    def _take_loop(self, key: str, label: str, *operands: List[str]) -> None:
        self._record(self.result.loop, key, label)
        self._consume(label, *operands)

    def _consume(self, label: str, *operands: List[str]) -> None:
        self.node.pop()
        for operand in operands:
            operand[:] = [item for item in operand if item != label]

    def _realign(self, label: str) -> None:
        self.left[:] = [item for item in self.left if item != label]
        self.right[:] = [item for item in self.right if item != label]

    def _error(self, message: str) -> ClassificationError:
        node, left, right = self.original
        return ClassificationError(message, node=node, left=left, right=right)

    # ------------------------------------------------------------- batch pass
    def _classify_batch_dims(self) -> None:
        while self.node:
            label = self.node[-1]
            if self._accept_primitive(label):
                continue
            self._spill_to_loop()
            self._accept_loop(label)

    def _accept_primitive(self, label: str) -> bool:
        left_tail = bool(self.left) and self.left[-1] == label
        right_tail = bool(self.right) and self.right[-1] == label

        if left_tail and right_tail and self._accepts(Acceptance.CB):
            self._take_primitive(Acceptance.CB, label, self.left, self.right)
        elif (
            left_tail
            and not right_tail
            and self._accepts(Acceptance.MB)
            and label not in self.right
        ):
            self._take_primitive(Acceptance.MB, label, self.left)
        elif (
            right_tail
            and not left_tail
            and self._accepts(Acceptance.NB)
            and label not in self.left
        ):
            self._take_primitive(Acceptance.NB, label, self.right)
        else:
            return False
        return True

    def _accept_loop(self, label: str) -> None:
        in_left = label in self.left
        in_right = label in self.right
        left_tail = self.left[-1] if self.left else None
        right_tail = self.right[-1] if self.right else None
        both = bool(self.left) and bool(self.right)

        if in_left and in_right:
            self._take_loop("bc", label, self.left, self.right)
        elif in_left:
            self._take_loop("bm", label, self.left)
        elif both and left_tail in self.right and left_tail not in self.node:
            # Shared contracted label blocks the operand tails; drop it and retry.
            self._realign(left_tail)
        elif both and right_tail in self.left and right_tail not in self.node:
            self._realign(right_tail)
        elif in_right:
            self._take_loop("bn", label, self.right)
        else:
            raise self._error(f"Contraction is malformed at index {label!r}")

    # -------------------------------------------------------- contracted pass
    def _classify_contracted_dims(self) -> None:
        candidates = self._collect_contracted_candidates()
        self._assign_contracted(candidates)

    def _restart_contracted_scan(self) -> None:
        self.accepting = Acceptance.CB
        self.phase = Phase.PRIMITIVE

    def _skip_classified(self, label: str) -> bool:
        """Advance the pointer over ``label``; True when it is already classified."""
        for kind in _LOOKUP_ORDER:
            if label in self.result.primitive[kind.key] or label in self.result.loop[_LOOP_OF[kind]]:
                self._advance_towards(kind)
                return True
        self._advance_towards(Acceptance.KB)
        return False

    def _advance_towards(self, kind: Acceptance) -> None:
        if self._accepts(kind):
            self.accepting = kind
        elif self.phase is Phase.PRIMITIVE:
            self.accepting = self.accepting.successor()
            self.phase = Phase.LOOP

    def _collect_contracted_candidates(self) -> List[str]:
        self._restart_contracted_scan()
        candidates: List[str] = []
        for label in reversed(self.right_k):
            if self._skip_classified(label):
                continue
            if label not in self.left_k:
                raise self._error("Node has invalid K dimension")
            if self._accepts(Acceptance.KB):
                self.phase = Phase.PRIMITIVE
                candidates.append(label)
        return candidates

    def _assign_contracted(self, candidates: List[str]) -> None:
        self._restart_contracted_scan()
        for label in reversed(self.left_k):
            if self._skip_classified(label):
                continue
            if label not in self.right_k:
                raise self._error("Node has invalid K dimension")
            if self._accepts(Acceptance.KB) and candidates and candidates[0] == label:
                self.phase = Phase.PRIMITIVE
                self._record(self.result.primitive, "kb", label)
                candidates.pop(0)
            else:
                self._record(self.result.loop, "bk", label)


def classify(node: Sequence[str], left: Sequence[str], right: Sequence[str]) -> DimensionTypes:
    """Classify the dimensions of ``node = left x right``.

    Raises ``ClassificationError`` when the index lists do not describe a
    valid binary contraction.
    """
    return DimensionClassifier(node, left, right).classify()


def try_classify(
    node: Sequence[str], left: Sequence[str], right: Sequence[str]
) -> Optional[DimensionTypes]:
    try:
        return classify(node, left, right)
    except ClassificationError as exc:
        logger.warning("classification failed: %s", exc)
        return None
