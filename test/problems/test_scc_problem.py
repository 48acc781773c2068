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

from eqsys import structural_simplify
from eqsys.error import (
    ParameterModeError,
    SystemNotCompleteError,
    SystemNotSimplifiedError,
)
from eqsys.problems import NonlinearProblem, SCCNonlinearProblem, solve
from eqsys.symbolic import Equation, parameters, variables
from eqsys.systems import NonlinearSystem, complete


@pytest.fixture
def staged():
    x, y = variables("x y")
    a, b = parameters("a b")
    sys = NonlinearSystem(
        [y * sp.sin(b) - x - 1, x**2 - a], [y, x], [a, b], name="staged"
    )
    return structural_simplify(sys), (x, y, a, b)


def test_stages(staged):
    sys, (x, y, a, b) = staged
    prob = SCCNonlinearProblem.from_system(sys, {x: 1.0, y: 1.0}, {a: 4.0, b: 0.5})

    assert prob.eq_sccs == [[1], [0]]
    assert prob.var_sccs == [[1], [0]]
    assert len(prob.probs) == 2
    assert prob.sys.unknowns() == [x, y]
    assert prob.sys.complete
    np.testing.assert_array_equal(prob.u0, [1.0, 1.0])

    # -a is evaluated ahead of the first stage, -x - 1 and sin(b) ahead of
    # the second
    assert all(writer.fn is not None for writer in prob.explicitfuns)
    assert len(prob.p.caches) == 1
    assert prob.p.caches[0].size == 2


def test_matches_joint_solve(staged):
    sys, (x, y, a, b) = staged
    u0map, parammap = {x: 1.0, y: 1.0}, {a: 4.0, b: 0.5}

    staged_sol = solve(SCCNonlinearProblem.from_system(sys, u0map, parammap))
    joint_sol = solve(NonlinearProblem.from_system(sys, u0map, parammap))

    assert staged_sol.success
    np.testing.assert_allclose(staged_sol.u, [2.0, 3.0 / np.sin(0.5)])
    joint = dict(zip(sys.unknowns(), joint_sol.u))
    np.testing.assert_allclose(staged_sol.u, [joint[x], joint[y]], rtol=1e-8)


def test_stage_jacobians(staged):
    sys, (x, y, a, b) = staged
    prob = SCCNonlinearProblem.from_system(
        sys, {x: 1.0, y: 1.0}, {a: 4.0, b: 0.5}, jac=True
    )

    assert all(stage.f.has_jac for stage in prob.probs)
    np.testing.assert_allclose(solve(prob).u, [2.0, 3.0 / np.sin(0.5)])


def test_observed_across_stages():
    x, y, w = variables("x y w")
    sys = NonlinearSystem(
        [x - 1, y - w], [x, y], [], observed=[Equation(w, 2 * x)], name="obs"
    )
    prob = SCCNonlinearProblem.from_system(structural_simplify(sys), {x: 0.0, y: 0.0})

    assert prob.eq_sccs == [[0], [1]]
    sol = solve(prob)
    assert sol.success
    np.testing.assert_allclose(sol.u, [1.0, 2.0])


def test_single_component():
    x, y = variables("x y")
    sys = structural_simplify(NonlinearSystem([x + y - 3, x - y - 1], name="coupled"))
    prob = SCCNonlinearProblem.from_system(sys, {x: 0.0, y: 0.0})

    assert len(prob.probs) == 1
    assert prob.explicitfuns[0].fn is None
    assert prob.p is prob.probs[0].p
    np.testing.assert_allclose(solve(prob).u, [2.0, 1.0])

    plain = NonlinearProblem.from_system(sys, {x: 0.0, y: 0.0})
    u = np.array([1.0, 2.0])
    np.testing.assert_allclose(prob.probs[0].f(u, prob.p), plain.f(u, plain.p))


def test_preconditions():
    x, y = variables("x y")
    sys = NonlinearSystem([x - 1, y - x], name="chain")

    with pytest.raises(SystemNotCompleteError):
        SCCNonlinearProblem.from_system(sys, {x: 0.0, y: 0.0})

    with pytest.raises(SystemNotSimplifiedError):
        SCCNonlinearProblem.from_system(complete(sys), {x: 0.0, y: 0.0})

    with pytest.raises(ParameterModeError):
        SCCNonlinearProblem.from_system(
            structural_simplify(sys, split=False), {x: 0.0, y: 0.0}
        )


def test_two_stage_equivalence():
    x, y = variables("x y")
    sys = structural_simplify(NonlinearSystem([x**2 - 1, y - x], name="two_stage"))
    u0map = {x: 0.5, y: 0.0}

    prob = SCCNonlinearProblem.from_system(sys, u0map)
    assert prob.eq_sccs == [[0], [1]]

    staged = solve(prob)
    joint = solve(NonlinearProblem.from_system(sys, u0map))
    np.testing.assert_allclose(staged.u, [1.0, 1.0])
    np.testing.assert_allclose(staged.u, joint.u, rtol=1e-8)
