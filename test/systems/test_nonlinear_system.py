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
import sympy as sp

from eqsys.error import ArgumentError
from eqsys.symbolic import Equation, parameters, variables
from eqsys.systems import NonlinearSystem, complete


def test_inference_and_canonical_form():
    x, y = variables("x y")
    a = parameters("a")
    sys = NonlinearSystem([Equation(x**2, a), Equation(y, x)], name="sys")

    assert sys.unknowns() == [x, y]
    assert sys.parameters() == [a]
    assert sys.equations() == [
        Equation(sp.S.Zero, a - x**2),
        Equation(sp.S.Zero, x - y),
    ]
    assert sys.residuals() == [a - x**2, x - y]


def test_missing_name():
    x = variables("x")
    with pytest.raises(ArgumentError, match="`name` keyword must be provided"):
        NonlinearSystem([x - 1])


def test_equality_up_to_reordering():
    x, y = variables("x y")
    s1 = NonlinearSystem([x - 1, y - 2], name="s")
    s2 = NonlinearSystem([y - 2, x - 1], [y, x], [], name="s")
    s3 = NonlinearSystem([x - 1, y - 2], name="other")

    assert s1 == s2
    assert hash(s1) == hash(s2)
    assert s1 != s3


def test_tags(tag_counter):
    x = variables("x")
    s1 = NonlinearSystem([x - 1], name="s1", tag_counter=tag_counter)
    s2 = NonlinearSystem([x - 2], name="s2", tag_counter=tag_counter)
    assert (s1.tag, s2.tag) == (1, 2)

    # cache-only changes share the tag, structural changes get a new one
    assert complete(s1).tag == s1.tag
    assert s1._replace(_eqs=[Equation(0, x - 3)]).tag == 3


def test_array_parameter_membership():
    x = variables("x")
    p = parameters("p", shape=2)

    inferred = NonlinearSystem([x - p[0]], name="inferred")
    assert inferred.parameters() == [p]

    whole = NonlinearSystem([x - p[0]], [x], [p[0], p[1]], name="whole")
    assert whole.parameters() == [p]

    with pytest.raises(ArgumentError, match="as a whole"):
        NonlinearSystem([x - p[0]], [x], [p[0]], name="partial")


def test_observed_validation():
    x, y = variables("x y")

    with pytest.raises(ArgumentError, match="cannot also be unknowns"):
        NonlinearSystem([x - 1], [x], [], observed=[Equation(x, 2)], name="bad")

    with pytest.raises(ArgumentError, match="single variable"):
        NonlinearSystem([x - 1], [x], [], observed=[Equation(x + y, 2)], name="bad")


def test_parameter_dependency_validation():
    x = variables("x")
    a, b, c = parameters("a b c")

    with pytest.raises(ArgumentError, match="cyclic"):
        NonlinearSystem(
            [x - a],
            name="cyclic",
            parameter_dependencies=[Equation(b, c), Equation(c, b)],
        )

    with pytest.raises(ArgumentError, match="defined once"):
        NonlinearSystem(
            [x - a],
            name="twice",
            parameter_dependencies=[Equation(b, a), Equation(b, 2 * a)],
        )

    sys = NonlinearSystem(
        [x - b], [x], [a, b], name="deps", parameter_dependencies=[Equation(b, 2 * a)]
    )
    assert sys.parameters() == [a]


def test_jacobian_memoized():
    x, y = variables("x y")
    sys = NonlinearSystem([x**2 - y, x * y - 1], name="jac")

    jac = sys.calculate_jacobian()
    assert jac == sp.Matrix([[2 * x, -1], [y, x]])
    assert sys.calculate_jacobian() is jac

    sparse = sys.calculate_jacobian(sparse=True)
    assert isinstance(sparse, sp.ImmutableSparseMatrix)
    assert sys.calculate_jacobian(sparse=True) is sparse

    # the memo holds a single entry, a different request replaces it
    again = sys.calculate_jacobian()
    assert again == jac
    assert again is not jac


def test_jacobian_substitutes_observed():
    x, y = variables("x y")
    sys = NonlinearSystem([y**2 - 4], [x], [], observed=[Equation(y, x + 1)], name="obs")

    assert sys.calculate_jacobian() == sp.Matrix([[2 * (x + 1)]])


def test_empty_jacobian():
    x = variables("x")
    sys = NonlinearSystem([], [x], [], name="empty")

    assert sys.calculate_jacobian().shape == (0, 1)


def test_hessian_and_sparsity():
    x, y, z = variables("x y z")
    sys = NonlinearSystem([x * y - 1, z - 2], name="hess")

    hessians = sys.calculate_hessian()
    assert len(hessians) == 2
    assert hessians[0] == sp.Matrix([[0, 1, 0], [1, 0, 0], [0, 0, 0]])
    assert hessians[1] == sp.zeros(3, 3)
    assert sys.calculate_hessian() is hessians

    pattern = sys.jacobian_sparsity()
    assert pattern.shape == (2, 3)
    np.testing.assert_array_equal(
        pattern.toarray(), [[True, True, False], [False, False, True]]
    )

    h0, h1 = sys.hessian_sparsity()
    assert h0.nnz == 2
    assert h1.nnz == 0

    H, H_iip = sys.generate_hessian()
    values = H(np.array([1.0, 2.0, 3.0]), np.zeros(0))
    assert values.shape == (2, 3, 3)
    assert values[0, 0, 1] == 1.0


def test_completed_copy_has_own_caches():
    x, y = variables("x y")
    sys = NonlinearSystem([x**2 - y, x * y - 1], name="cow")

    done = complete(sys)
    jac = done.calculate_jacobian()
    assert sys._jac.value is None

    # values computed before the copy are carried over
    assert complete(done).calculate_jacobian() is jac

    done.calculate_jacobian(sparse=True)
    again = complete(done)
    assert again.calculate_jacobian(sparse=True) is done.calculate_jacobian(sparse=True)
    assert sys.calculate_jacobian() == jac
