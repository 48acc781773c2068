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

from eqsys.error import ArgumentError, SystemNotCompleteError
from eqsys.problems import DDEProblem, ODEProblem, constant_history, solve
from eqsys.symbolic import (
    Differential,
    Equation,
    independent_variable,
    parameters,
    variables,
)
from eqsys.systems import ODESystem, complete


@pytest.fixture
def decay():
    t = independent_variable("t")
    x = variables("x", iv=t, default=1.0)
    a = parameters("a", default=1.0)
    sys = ODESystem([Equation(Differential(t)(x), -a * x)], t, name="decay")
    return sys, (t, x, a)


def test_requires_complete_system(decay):
    sys, _ = decay

    with pytest.raises(SystemNotCompleteError):
        ODEProblem.from_system(sys, tspan=(0.0, 1.0))


def test_solve(decay):
    sys, (t, x, a) = decay
    prob = ODEProblem.from_system(complete(sys), tspan=(0.0, 1.0))

    assert prob.tspan == (0.0, 1.0)
    assert prob.f.mass_matrix is None
    np.testing.assert_allclose(prob.u0, [1.0])

    sol = solve(prob, rtol=1e-8, atol=1e-10)
    assert sol.success
    assert sol.t[-1] == pytest.approx(1.0)
    assert sol.u[0, -1] == pytest.approx(np.exp(-1.0), rel=1e-6)


def test_solve_stiff_with_jacobian(decay):
    sys, (t, x, a) = decay
    prob = ODEProblem.from_system(
        complete(sys), {x: 2.0}, (0.0, 1.0), {a: 3.0}, jac=True, tgrad=True
    )

    np.testing.assert_allclose(prob.f.jac(np.array([2.0]), prob.p, 0.0), [[-3.0]])
    np.testing.assert_allclose(prob.f.tgrad(np.array([2.0]), prob.p, 0.0), [0.0])

    sol = solve(prob, method="BDF", rtol=1e-8, atol=1e-10)
    assert sol.u[0, -1] == pytest.approx(2.0 * np.exp(-3.0), rel=1e-5)


def test_tspan(decay):
    sys, _ = decay

    with pytest.raises(ArgumentError, match="No time span"):
        ODEProblem.from_system(complete(sys))

    t = sys.iv
    x = sys.unknowns()[0]
    with_tspan = ODESystem(
        [Equation(Differential(t)(x), -x)], t, tspan=(0, 2), name="spanned"
    )
    prob = ODEProblem.from_system(complete(with_tspan))
    assert prob.tspan == (0.0, 2.0)


def test_algebraic_equations_need_dae_solver():
    t = independent_variable("t")
    x = variables("x", iv=t, default=1.0)
    y = variables("y", iv=t, default=1.0)
    sys = ODESystem(
        [Equation(Differential(t)(x), -x), Equation(y, 2 * x)], t, name="dae"
    )
    prob = ODEProblem.from_system(complete(sys), tspan=(0.0, 1.0))

    np.testing.assert_array_equal(prob.f.mass_matrix, [[1.0, 0.0], [0.0, 0.0]])
    with pytest.raises(ArgumentError, match="DAE solver"):
        solve(prob)


def test_delay_problem():
    t = independent_variable("t")
    x = variables("x", iv=t, default=1.0)
    tau = parameters("tau", default=1.0)
    sys = complete(
        ODESystem([Equation(Differential(t)(x), -x.func(t - tau))], t, name="delayed")
    )

    with pytest.raises(ArgumentError, match="DDEProblem"):
        ODEProblem.from_system(sys, tspan=(0.0, 1.0))

    prob = DDEProblem.from_system(sys, tspan=(0.0, 1.0))
    np.testing.assert_allclose(prob.h(prob.p, -0.5), [1.0])
    np.testing.assert_allclose(prob.f(prob.u0, prob.h, prob.p, 0.0), [-1.0])

    du = np.zeros(1)
    prob.f(du, prob.u0, prob.h, prob.p, 0.0)
    np.testing.assert_allclose(du, [-1.0])


def test_constant_history():
    h = constant_history([1.0, 2.0])
    np.testing.assert_array_equal(h(None, -3.0), [1.0, 2.0])
