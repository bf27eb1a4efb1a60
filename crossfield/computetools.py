"""
Force law and time integration methods

Included stock :class:`crossfield.core.Integrator` subclasses:

- Explicit Euler (first order Taylor) step
- Explicit midpoint (second order Runge-Kutta) step
- Classical fourth order Runge-Kutta step
- Closed form solution for a particle started at the origin with
  ``v = (0, 3E/B)``, used as the reference for convergence studies

The velocity and position equations are advanced from the same starting
state. Position stages are built from the pre-step velocity plus the
velocity stage increments, so the position never sees the velocity that
was computed for the end of the step.
"""
import math

from .core import FieldParameters, Integrator, State, Vector2


def acceleration(v: Vector2, params: FieldParameters) -> Vector2:
    """Acceleration of a particle moving with velocity ``v``

    Parameters
    ----------
    v : :class:`Vector2`
        Velocity ``(vy, vz)``.
    params : :class:`FieldParameters`
        Field strengths, mass and charge.

    Returns
    -------
    :class:`Vector2`
        ``(q/m) * (E - B*vz, B*vy)``. Non-finite input gives non-finite
        output.
    """
    factor = params.q / params.m
    return Vector2(factor * (params.E - params.B * v.z),
                   factor * params.B * v.y)


def analytic_position(t: float, params: FieldParameters) -> Vector2:
    """Closed form position at time ``t``"""
    w = params.w
    drift = params.E / params.B
    radius = 2 * params.E / (w * params.B)
    return Vector2(radius * (math.cos(w * t) - 1),
                   drift * t + radius * math.sin(w * t))


def analytic_velocity(t: float, params: FieldParameters) -> Vector2:
    """Closed form velocity at time ``t``"""
    w = params.w
    drift = params.E / params.B
    return Vector2(-2 * drift * math.sin(w * t),
                   drift * (2 * math.cos(w * t) + 1))


def analytic_state(t: float, params: FieldParameters) -> State:
    """Closed form :class:`State` at time ``t``

    This is the exact trajectory of a particle which starts at the
    origin with velocity ``(0, 3E/B)``.
    """
    return State(analytic_position(t, params), analytic_velocity(t, params))


class Euler(Integrator):
    """Explicit Euler (first order Taylor) step

    v_{n+1} = v_n + dt * a(v_n)
    r_{n+1} = r_n + dt * v_n
    """

    def step(self, state: State, t: float) -> State:
        r, v = state
        a = acceleration(v, self._params)
        return State(r + v * self.dt, v + a * self.dt)


class Midpoint(Integrator):
    """Explicit midpoint (second order Runge-Kutta) step

    k1 = dt * f(y_n)
    k2 = dt * f(y_n + k1 / 2)
    y_{n+1} = y_n + k2
    """

    def step(self, state: State, t: float) -> State:
        r, v = state
        dt = self.dt

        k1_v = dt * acceleration(v, self._params)
        k2_v = dt * acceleration(v + 0.5 * k1_v, self._params)

        # k1_r = dt * v does not enter the midpoint update
        k2_r = dt * (v + 0.5 * k1_v)

        return State(r + k2_r, v + k2_v)


class RungeKutta4(Integrator):
    """Classical fourth order Runge-Kutta step

    k1 = dt * f(y_n)
    k2 = dt * f(y_n + k1 / 2)
    k3 = dt * f(y_n + k2 / 2)
    k4 = dt * f(y_n + k3)
    y_{n+1} = y_n + (k1 + 2 k2 + 2 k3 + k4) / 6

    The right hand side has no explicit time dependence, so ``k3`` is
    the ``k2`` formula applied to its own input.
    """

    def step(self, state: State, t: float) -> State:
        r, v = state
        dt = self.dt

        k1_v = dt * acceleration(v, self._params)
        k2_v = self._half_stage(v, k1_v)
        k3_v = self._half_stage(v, k2_v)
        k4_v = dt * acceleration(v + k3_v, self._params)

        k1_r = dt * v
        k2_r = dt * (v + 0.5 * k1_v)
        k3_r = dt * (v + 0.5 * k2_v)
        k4_r = dt * (v + k3_v)

        return State(r + self._combine(k1_r, k2_r, k3_r, k4_r),
                     v + self._combine(k1_v, k2_v, k3_v, k4_v))

    def _half_stage(self, v, k):
        return self.dt * acceleration(v + 0.5 * k, self._params)

    @staticmethod
    def _combine(k1, k2, k3, k4):
        return (k1 + 2 * k2 + 2 * k3 + k4) / 6


class Analytic(Integrator):
    """Evaluate the closed form solution at the requested time

    The previous state is ignored; the result depends only on ``t``.
    """

    def step(self, state: State, t: float) -> State:
        return analytic_state(t, self._params)

    def acceleration_at(self, t: float) -> Vector2:
        """Acceleration of the closed form solution at time ``t``"""
        return acceleration(analytic_velocity(t, self._params), self._params)


Integrator.register("Euler", Euler)
Integrator.register("Taylor", Euler)
Integrator.register("Midpoint", Midpoint)
Integrator.register("RK2", Midpoint)
Integrator.register("RungeKutta4", RungeKutta4)
Integrator.register("RungeKutta", RungeKutta4)
Integrator.register("RK4", RungeKutta4)
Integrator.register("Analytic", Analytic)
