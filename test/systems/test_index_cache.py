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

import numpy as np
import pytest

from eqsys.error import MissingValuesError
from eqsys.symbolic import parameters, variables
from eqsys.systems import (
    BufferTemplate,
    IndexCache,
    NonlinearSystem,
    ParameterBuckets,
    complete,
)


@pytest.fixture
def mixed():
    a = parameters("a")
    n = parameters("n", dtype=int)
    flag = parameters("flag", dtype=bool)
    k = parameters("k", shape=(2, 2))
    return a, n, flag, k


def test_buckets_by_type(mixed):
    a, n, flag, k = mixed
    cache = IndexCache([n, a, flag, k])

    assert cache.bucket_dtypes == (
        np.dtype(np.float64),
        np.dtype(np.int64),
        np.dtype(np.bool_),
    )
    assert cache.bucket_sizes == (5, 1, 1)
    assert cache.nbuckets == 3
    assert cache.param_index[a].offset == 0
    assert cache.param_index[k].offset == 1
    assert cache.param_index[k].shape == (2, 2)
    assert cache.slot(k[1, 0]) == (0, 3)
    assert cache.slot(n) == (1, 0)
    assert k[0, 1] in cache


def test_parameter_buckets(mixed):
    a, n, flag, k = mixed
    cache = IndexCache([a, n, flag, k])
    p = ParameterBuckets.from_values(
        cache, {a: 1.5, n: 3, flag: True, k: [[1.0, 2.0], [3.0, 4.0]]}
    )

    assert len(p) == 3
    np.testing.assert_array_equal(p[0], [1.5, 1.0, 2.0, 3.0, 4.0])
    assert p[1].dtype == np.int64
    assert p.get_value(cache, n) == 3
    assert p.get_value(cache, k[1, 1]) == 4.0
    np.testing.assert_array_equal(p.get_value(cache, k), [[1.0, 2.0], [3.0, 4.0]])

    with_caches = p.rebuild_with_caches(BufferTemplate(np.dtype(np.float64), 2))
    assert len(with_caches) == 4
    np.testing.assert_array_equal(with_caches[3], [0.0, 0.0])
    assert with_caches.buckets is p.buckets


def test_missing_and_mismatched_values(mixed):
    a, n, flag, k = mixed
    cache = IndexCache([a, k])

    with pytest.raises(MissingValuesError, match="No values"):
        ParameterBuckets.from_values(cache, {a: 1.0})

    with pytest.raises(MissingValuesError, match="Expected 4 values"):
        ParameterBuckets.from_values(cache, {a: 1.0, k: [1.0, 2.0]})


def test_complete_builds_index_cache(mixed):
    a, n, flag, k = mixed
    x = variables("x")
    sys = NonlinearSystem([x - a * n], name="sys")

    split = complete(sys)
    assert split.split
    assert split.index_cache.param_index.keys() == {a, n}

    flat = complete(sys, split=False)
    assert not flat.split
    assert flat.index_cache is None
