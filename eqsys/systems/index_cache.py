# Copyright (C) 2024 Collimator, Inc.
# SPDX-License-Identifier: AGPL-3.0-only
#
# This program is free software: you can redistribute it and/or modify it under
# the terms of the GNU Affero General Public License as published by the Free
# Software Foundation, version 3. This program is distributed in the hope that it
# will be useful, but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the GNU Affero General
# Public License for more details.  You should have received a copy of the GNU
# Affero General Public License along with this program. If not, see
# <https://www.gnu.org/licenses/>.

"""Split ("bucket") parameter representation.

Parameters are grouped by numeric type into one flat buffer per type, ordered
float, int, bool, then everything else. Array parameters occupy consecutive
slots of their bucket. The parameter object handed to generated functions is a
`ParameterBuckets`, indexable as `p[i]` over its buckets followed by its cache
buffers.
"""

import math
from dataclasses import dataclass, field, replace
from typing import NamedTuple

import numpy as np
import sympy as sp

from ..error import MissingValuesError
from ..symbolic.variables import symtype

__all__ = [
    "BufferTemplate",
    "ParameterIndex",
    "IndexCache",
    "ParameterBuckets",
    "bucket_dtype",
]


_bucket_order = (
    np.dtype(np.float64),
    np.dtype(np.int64),
    np.dtype(np.bool_),
    np.dtype(object),
)


def bucket_dtype(t) -> np.dtype:
    try:
        kind = np.dtype(t).kind
    except TypeError:
        return np.dtype(object)
    match kind:
        case "f":
            return np.dtype(np.float64)
        case "i" | "u":
            return np.dtype(np.int64)
        case "b":
            return np.dtype(np.bool_)
        case _:
            return np.dtype(object)


class BufferTemplate(NamedTuple):
    """Element type and length of a cache buffer."""

    dtype: np.dtype
    length: int


@dataclass(frozen=True)
class ParameterIndex:
    bucket: int
    offset: int
    shape: tuple[int, ...] = ()

    @property
    def size(self) -> int:
        return math.prod(self.shape)


class IndexCache:
    """Location of every parameter in the split representation."""

    def __init__(self, params):
        groups: dict[np.dtype, list] = {}
        for param in params:
            groups.setdefault(bucket_dtype(symtype(param)), []).append(param)

        self.bucket_dtypes = tuple(dt for dt in _bucket_order if dt in groups)
        self.param_index: dict[sp.Basic, ParameterIndex] = {}
        sizes = []
        for bucket, dtype in enumerate(self.bucket_dtypes):
            offset = 0
            for param in groups[dtype]:
                shape = ()
                if isinstance(param, sp.IndexedBase):
                    shape = tuple(int(n) for n in param.shape)
                index = ParameterIndex(bucket, offset, shape)
                self.param_index[param] = index
                offset += index.size
            sizes.append(offset)
        self.bucket_sizes = tuple(sizes)

    @classmethod
    def from_system(cls, sys) -> "IndexCache":
        return cls(sys.parameters())

    @property
    def nbuckets(self) -> int:
        return len(self.bucket_dtypes)

    def __contains__(self, param) -> bool:
        if isinstance(param, sp.Indexed):
            return param.base in self.param_index
        return param in self.param_index

    def slot(self, param) -> tuple[int, int]:
        """(bucket, position) of a scalar parameter or an array element."""
        if isinstance(param, sp.Indexed):
            index = self.param_index[param.base]
            flat = np.ravel_multi_index(
                tuple(int(i) for i in param.indices), index.shape
            )
            return index.bucket, index.offset + int(flat)
        index = self.param_index[param]
        return index.bucket, index.offset

    def __repr__(self):
        sizes = ", ".join(
            f"{dt}[{n}]" for dt, n in zip(self.bucket_dtypes, self.bucket_sizes)
        )
        return f"IndexCache({sizes})"


@dataclass(frozen=True, eq=False)
class ParameterBuckets:
    """Parameter values in the split representation, plus cache buffers
    shared by the stages of a staged solve."""

    buckets: tuple[np.ndarray, ...]
    caches: tuple[np.ndarray, ...] = field(default=())

    def __getitem__(self, i):
        return (self.buckets + self.caches)[i]

    def __len__(self):
        return len(self.buckets) + len(self.caches)

    def __iter__(self):
        return iter(self.buckets + self.caches)

    @classmethod
    def from_values(cls, index_cache: IndexCache, values: dict) -> "ParameterBuckets":
        buckets = [
            np.zeros(size, dtype=dtype)
            for dtype, size in zip(index_cache.bucket_dtypes, index_cache.bucket_sizes)
        ]
        missing = [p for p in index_cache.param_index if p not in values]
        if missing:
            raise MissingValuesError(
                "No values given for parameters", variables=missing
            )
        for param, index in index_cache.param_index.items():
            value = np.ravel(np.asarray(values[param], dtype=buckets[index.bucket].dtype))
            if value.size != index.size:
                raise MissingValuesError(
                    f"Expected {index.size} values for {param}, got {value.size}",
                    variables=[param],
                )
            buckets[index.bucket][index.offset : index.offset + value.size] = value
        return cls(tuple(buckets))

    def get_value(self, index_cache: IndexCache, param):
        if isinstance(param, sp.Indexed):
            bucket, pos = index_cache.slot(param)
            return self.buckets[bucket][pos]
        index = index_cache.param_index[param]
        if not index.shape:
            return self.buckets[index.bucket][index.offset]
        chunk = self.buckets[index.bucket][index.offset : index.offset + index.size]
        return chunk.reshape(index.shape)

    def rebuild_with_caches(self, *templates: BufferTemplate) -> "ParameterBuckets":
        caches = tuple(np.zeros(t.length, dtype=t.dtype) for t in templates)
        return replace(self, caches=caches)
