"""Interaction records, key <-> index mappings and item feature matrices.

The mappings wrap scikit-learn's ``LabelEncoder`` so the dense index of a key
is its position among the sorted unique keys.  Unlike ``LabelEncoder.transform``
the lookups here never raise on unknown keys: cold-start users and items are
expected in normal operation and are simply reported as ``None``.
"""

from __future__ import annotations

import logging
from collections import Counter, defaultdict
from typing import Hashable, Iterable, Mapping, NamedTuple, Sequence

import numpy as np
import pandas as pd
from sklearn.preprocessing import LabelEncoder

log = logging.getLogger(__name__)


class Interaction(NamedTuple):
    user: Hashable
    item: Hashable


# ---------------------------------------------------------------------------
# Index mapping
# ---------------------------------------------------------------------------


class IndexMapping:
    """Bidirectional mapping between external keys and ``[0, n)``."""

    def __init__(self, encoder: LabelEncoder):
        self._encoder = encoder
        self._keys = encoder.classes_.tolist()
        self._index = {k: i for i, k in enumerate(self._keys)}

    @classmethod
    def fit(cls, keys: Iterable[Hashable]) -> "IndexMapping":
        enc = LabelEncoder()
        enc.fit(list(keys))
        return cls(enc)

    def __len__(self) -> int:
        return len(self._keys)

    def __contains__(self, key) -> bool:
        return key in self._index

    @property
    def keys(self) -> list:
        return list(self._keys)

    @property
    def encoder(self) -> LabelEncoder:
        return self._encoder

    def index_of(self, key) -> int | None:
        return self._index.get(key)

    def indices_of(self, keys: Iterable) -> list[int | None]:
        return [self._index.get(k) for k in keys]

    def key_of(self, index: int):
        if not 0 <= index < len(self._keys):
            raise IndexError(f"index {index} out of range for {len(self._keys)} keys")
        return self._keys[index]


# ---------------------------------------------------------------------------
# Interaction log (dataset loader + history collaborator)
# ---------------------------------------------------------------------------


class InteractionLog:
    """Immutable list of ``(user, item)`` events plus the mappings over them."""

    def __init__(
        self,
        records: Sequence[Interaction],
        users: IndexMapping,
        items: IndexMapping,
    ):
        self.records = tuple(Interaction(*r) for r in records)
        self.users = users
        self.items = items

        self._seen: dict = defaultdict(set)
        for r in self.records:
            self._seen[r.user].add(r.item)

    # -------------------------------------------------------------

    @classmethod
    def from_records(
        cls,
        records: Iterable[Sequence],
        users: IndexMapping | None = None,
        items: IndexMapping | None = None,
    ) -> "InteractionLog":
        records = [Interaction(*r) for r in records]
        if users is None:
            users = IndexMapping.fit({r.user for r in records})
        if items is None:
            items = IndexMapping.fit({r.item for r in records})
        return cls(records, users, items)

    @classmethod
    def from_frame(
        cls,
        df: pd.DataFrame,
        user_col: str = "user_id",
        item_col: str = "item_id",
        users: IndexMapping | None = None,
        items: IndexMapping | None = None,
    ) -> "InteractionLog":
        df = df.dropna(subset=[user_col, item_col])
        return cls.from_records(zip(df[user_col].tolist(), df[item_col].tolist()), users, items)

    def __len__(self) -> int:
        return len(self.records)

    # -------------------------------------------------------------

    def index_pairs(self) -> tuple[np.ndarray, np.ndarray, int]:
        """Return ``(user_idx, item_idx, n_dropped)`` for records whose keys
        are both known to the mappings."""
        u_lst, i_lst = [], []
        for r in self.records:
            u, i = self.users.index_of(r.user), self.items.index_of(r.item)
            if u is None or i is None:
                continue
            u_lst.append(u)
            i_lst.append(i)
        dropped = len(self.records) - len(u_lst)
        if dropped:
            log.warning("Dropped %d/%d interactions with unknown user or item", dropped, len(self.records))
        return np.asarray(u_lst, dtype=np.int64), np.asarray(i_lst, dtype=np.int64), dropped

    def items_seen_by(self, user) -> set:
        return set(self._seen.get(user, ()))

    def sequences(self) -> dict:
        """user key -> known item indices, in record order."""
        out: dict = {}
        for r in self.records:
            i = self.items.index_of(r.item)
            if i is None:
                continue
            out.setdefault(r.user, []).append(i)
        return out


# ---------------------------------------------------------------------------
# Item tag features
# ---------------------------------------------------------------------------


def item_feature_matrix(
    item_tags: Mapping[Hashable, Iterable[str]],
    items: IndexMapping,
    vocab_size: int | None = None,
) -> tuple[np.ndarray, list[str]]:
    """Multi-hot ``[len(items), K]`` matrix over the K most frequent tags."""
    freq = Counter(t for tags in item_tags.values() for t in (tags or ()))
    vocab = [t for t, _ in freq.most_common(vocab_size)]
    tag2idx = {t: j for j, t in enumerate(vocab)}

    mat = np.zeros((len(items), len(vocab)), dtype=np.float32)
    for key, tags in item_tags.items():
        row = items.index_of(key)
        if row is None:
            continue
        for t in tags or ():
            col = tag2idx.get(t)
            if col is not None:
                mat[row, col] = 1.0
    log.info("Item feature matrix | %d items | %d tags", *mat.shape)
    return mat, vocab
