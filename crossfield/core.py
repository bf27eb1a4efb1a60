"""
Core classes of the crossfield velocity-filter simulator

A charged particle moves in the (y, z) plane through uniform, crossed
electric and magnetic fields. The electric field points along y, the
magnetic field is normal to the plane, and the particle drifts along z
with the E x B velocity ``E/B`` while gyrating at the cyclotron
frequency ``w = qB/m``. The filter is a cylinder of radius ``R`` and
length ``L``: a particle whose lateral displacement reaches the wall
before it reaches the exit plane has crashed, and one that reaches the
exit plane first has passed.

Notes
-----
The equation of motion is

.. math:: dv/dt = (q/m) (E - B v_z, B v_y), \\quad dr/dt = v

Because the force depends on the velocity alone, the velocity equation
decouples from the position equation, and the position is a pure
integral of the velocity.
"""
from abc import ABC, abstractmethod
from concurrent.futures import ProcessPoolExecutor, as_completed
import math
import warnings

import numpy as np

NUM_PERIODS = 1
DEFAULT_DT = 0.01
DEFAULT_MAX_STEPS = 1_000_000

# Velocity band of the randomized initial conditions, in m/s
FIELDS_RATIO = 3.09e7
MIN_VELOCITY = 3.01e7
MAX_VELOCITY = 3.17e7

PROTON_MASS = 1.67e-27
PROTON_CHARGE = 1.6e-19


class DynamicFactory(ABC):
    """Abstract class which provides dynamic factory functionality

    This base class provides a dynamic factory pattern functionality to
    classes that derive from this. Names are matched without regard to
    case, so ``"rk4"`` and ``"RK4"`` find the same class.
    """

    @property
    @abstractmethod
    def _factory_type_name(self):
        """Override this in derived classes with a string that
        describes type of the derived factory"""
        pass

    @property
    @abstractmethod
    def _registry(self):
        """Override this in derived classes with a dictionary that
        holds references to derived subclasses"""
        pass

    @classmethod
    def register(cls, name_to_register: str, class_to_register,
                 override=False):
        """Add a derived class to the registry"""
        key = name_to_register.lower()
        if key in cls._registry and not override:
            raise ValueError("{0} '{1}' already registered".format(
                cls._factory_type_name, name_to_register))
        if not issubclass(class_to_register, cls):
            raise TypeError("{0} is not a subclass of {1}".format(
                class_to_register, cls))
        cls._registry[key] = class_to_register

    @classmethod
    def lookup(cls, name: str):
        """Look up a name in the registry, and return the associated
        derived class"""
        try:
            return cls._registry[name.lower()]
        except (KeyError, AttributeError):
            raise KeyError("{0} '{1}' not found in registry".format(
                cls._factory_type_name, name))

    @classmethod
    def is_valid_name(cls, name: str):
        """Check if the name is in the registry"""
        return isinstance(name, str) and name.lower() in cls._registry

    @classmethod
    def registered_names(cls):
        """Sorted list of the registered names"""
        return sorted(cls._registry)


class Vector2:
    """Immutable two component vector ``(y, z)``

    Supports componentwise addition, componentwise multiplication by
    another :class:`Vector2`, and multiplication or division by a
    scalar. No units are attached; keeping them consistent is up to the
    caller.

    Parameters
    ----------
    y : `float`
        Component along the electric field.
    z : `float`
        Component along the drift (filter axis) direction.
    """
    __slots__ = ("_y", "_z")

    def __init__(self, y=0.0, z=0.0):
        object.__setattr__(self, "_y", float(y))
        object.__setattr__(self, "_z", float(z))

    @property
    def y(self):
        return self._y

    @property
    def z(self):
        return self._z

    def __setattr__(self, name, value):
        raise AttributeError(f"{self.__class__.__name__} is immutable")

    def __add__(self, other):
        if not isinstance(other, Vector2):
            return NotImplemented
        return Vector2(self._y + other._y, self._z + other._z)

    def __sub__(self, other):
        if not isinstance(other, Vector2):
            return NotImplemented
        return Vector2(self._y - other._y, self._z - other._z)

    def __neg__(self):
        return Vector2(-self._y, -self._z)

    def __mul__(self, other):
        if isinstance(other, Vector2):
            return Vector2(self._y * other._y, self._z * other._z)
        return Vector2(self._y * other, self._z * other)

    def __rmul__(self, other):
        return Vector2(other * self._y, other * self._z)

    def __truediv__(self, other):
        return Vector2(self._y / other, self._z / other)

    def __iter__(self):
        yield self._y
        yield self._z

    def __eq__(self, other):
        if not isinstance(other, Vector2):
            return NotImplemented
        return self._y == other._y and self._z == other._z

    def __hash__(self):
        return hash((self._y, self._z))

    def __reduce__(self):
        return (self.__class__, (self._y, self._z))

    def norm(self):
        """Euclidean length of the vector"""
        return math.hypot(self._y, self._z)

    def is_finite(self):
        return math.isfinite(self._y) and math.isfinite(self._z)

    def as_array(self):
        """Returns the components as a :class:`numpy.ndarray`"""
        return np.array([self._y, self._z])

    def __repr__(self):
        return f"{self.__class__.__name__}({self._y!r}, {self._z!r})"


class State:
    """Snapshot of a particle at one instant

    Parameters
    ----------
    r : :class:`Vector2`
        Position.
    v : :class:`Vector2`
        Velocity.
    """
    __slots__ = ("_r", "_v")

    def __init__(self, r: Vector2, v: Vector2):
        object.__setattr__(self, "_r", r)
        object.__setattr__(self, "_v", v)

    @property
    def r(self):
        return self._r

    @property
    def v(self):
        return self._v

    def __setattr__(self, name, value):
        raise AttributeError(f"{self.__class__.__name__} is immutable")

    def __iter__(self):
        yield self._r
        yield self._v

    def __eq__(self, other):
        if not isinstance(other, State):
            return NotImplemented
        return self._r == other._r and self._v == other._v

    def __hash__(self):
        return hash((self._r, self._v))

    def __reduce__(self):
        return (self.__class__, (self._r, self._v))

    def is_finite(self):
        return self._r.is_finite() and self._v.is_finite()

    def as_array(self):
        """Returns ``[y, z, vy, vz]`` as a :class:`numpy.ndarray`"""
        return np.array([self._r.y, self._r.z, self._v.y, self._v.z])

    def __repr__(self):
        return f"{self.__class__.__name__}(r={self._r!r}, v={self._v!r})"


class FieldParameters:
    """Physical and numerical configuration of one simulation

    Instances are immutable, and are shared by every :class:`Particle`
    of a :class:`Simulation`. Invalid values are rejected here, so that
    a bad configuration is never discovered in the middle of a run.

    Parameters
    ----------
    E : `float`
        Electric field magnitude.
    B : `float`
        Magnetic field magnitude, must be nonzero.
    m : `float`
        Particle mass, must be positive.
    q : `float`
        Particle charge, must be nonzero.
    dt : `float`
        Fixed time step, must be positive.
    R : `float`
        Filter radius, must be positive.
    L : `float`
        Filter length, must be positive.
    method : `str`
        Name of a registered :class:`Integrator`.
    num_periods : `float`, optional
        Number of cyclotron periods in the simulated duration ``T``.

    Attributes
    ----------
    w : `float`
        Cyclotron frequency, ``q*B/m``.
    T : `float`
        Total simulated duration, ``num_periods * 2*pi / |w|``.

    Raises
    ------
    ValueError
        If any value is out of range, or the method is not registered.
    """

    _fields = ("E", "B", "m", "q", "dt", "R", "L", "method", "num_periods")

    def __init__(self, E=1.0, B=1.0, m=1.0, q=1.0, dt=DEFAULT_DT,
                 R=1.0, L=1.0, method="Euler", num_periods=NUM_PERIODS):
        values = {"E": E, "B": B, "m": m, "q": q, "dt": dt, "R": R,
                  "L": L, "num_periods": num_periods}
        for name, value in values.items():
            try:
                value = float(value)
            except (TypeError, ValueError):
                raise ValueError(f"Parameter {name} must be a real number, "
                                 f"got {value!r}")
            if not math.isfinite(value):
                raise ValueError(f"Parameter {name} must be finite, "
                                 f"got {value}")
            object.__setattr__(self, name, value)

        for name in ("dt", "m", "R", "L", "num_periods"):
            if getattr(self, name) <= 0:
                raise ValueError(f"Parameter {name} must be positive, "
                                 f"got {getattr(self, name)}")
        for name in ("B", "q"):
            if getattr(self, name) == 0:
                raise ValueError(f"Parameter {name} must be nonzero")
        if not Integrator.is_valid_name(method):
            raise ValueError(f"Unknown integration method {method!r}; "
                             f"expected one of "
                             f"{Integrator.registered_names()}")
        object.__setattr__(self, "method", method)

        w = self.q * self.B / self.m
        object.__setattr__(self, "w", w)
        object.__setattr__(self, "T", self.num_periods * 2 * np.pi / abs(w))

    @classmethod
    def from_input(cls, input_data: dict):
        """Construct the parameters from a configuration dictionary

        Parameters
        ----------
        input_data : `dict`
            Dictionary with the sections ``"Fields"`` (``E``, ``B``,
            ``m``, ``q``), ``"Clock"`` (``dt``, optional
            ``num_periods``), ``"Filter"`` (``R``, ``L``) and
            ``"Integrator"`` (``method``). Missing keys take the
            defaults of the constructor.
        """
        sections = {"Fields": ("E", "B", "m", "q"),
                    "Clock": ("dt", "num_periods"),
                    "Filter": ("R", "L"),
                    "Integrator": ("method",)}
        kwargs = {}
        for section, names in sections.items():
            section_data = input_data.get(section, {})
            for name in names:
                if name in section_data:
                    kwargs[name] = section_data[name]
        return cls(**kwargs)

    def replace(self, **changes):
        """Return a validated copy with some values changed"""
        kwargs = self.to_dict()
        kwargs.update(changes)
        return self.__class__(**kwargs)

    def to_dict(self):
        return {name: getattr(self, name) for name in self._fields}

    def __setattr__(self, name, value):
        raise AttributeError(f"{self.__class__.__name__} is immutable")

    def __eq__(self, other):
        if not isinstance(other, FieldParameters):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __hash__(self):
        return hash(tuple(self.to_dict().items()))

    def __reduce__(self):
        # _fields is in the positional order of __init__
        return (self.__class__,
                tuple(getattr(self, name) for name in self._fields))

    def __repr__(self):
        return f"{self.__class__.__name__}({self.to_dict()})"


class Integrator(DynamicFactory):
    """This is the base class for the time integration methods

    An integrator advances a :class:`State` by one fixed time step. It
    keeps no state of its own between steps; any intermediate stage
    vectors live only inside :meth:`step`.

    Parameters
    ----------
    params : :class:`FieldParameters`
        The shared parameters of the simulation.

    Attributes
    ----------
    _registry : `dict`
        Registered derived Integrator classes.
    _factory_type_name : `str`
        Type of Integrator child class.
    _params : :class:`FieldParameters`
        The shared parameters of the simulation.
    dt : `float`
        The time step.
    """
    _factory_type_name = "Integrator"
    _registry = {}

    def __init__(self, params: FieldParameters):
        self._params = params
        self.dt = params.dt

    def step(self, state: State, t: float) -> State:
        """Advance ``state`` by one time step

        Parameters
        ----------
        state : :class:`State`
            The most recent state of the particle.
        t : `float`
            The absolute time of the state being computed.

        Returns
        -------
        :class:`State`
            The new state.
        """
        raise NotImplementedError

    def __repr__(self):
        return f"{self.__class__.__name__}({self._params})"


class Particle:
    """A single particle and its trajectory

    The trajectory is an append-only list of ``(time, State)`` entries,
    starting with the initial condition at time 0. After every step the
    new position is classified against the filter geometry:

    - crashed, if ``|y| >= R`` and ``z <= L`` (checked first)
    - passed, if ``z > L``

    Once a particle has crashed or passed, the classification never
    changes. A non-finite state is flagged at any step, including after
    the particle has crashed or passed, and then takes precedence in
    :attr:`outcome`.

    Parameters
    ----------
    initial_condition : :class:`State`
        State of the particle at time 0.
    params : :class:`FieldParameters`
        Shared parameters; the integrator is chosen from
        ``params.method``.
    """

    def __init__(self, initial_condition: State, params: FieldParameters):
        self._params = params
        self._integrator = Integrator.lookup(params.method)(params)
        self._times = [0.0]
        self._states = [initial_condition]

        self._crashed = False
        self._passed = False
        self._did_not_terminate = False
        self._non_finite = not initial_condition.is_finite()

    @property
    def params(self):
        return self._params

    @property
    def integrator(self):
        return self._integrator

    @property
    def crashed(self):
        return self._crashed

    @property
    def passed(self):
        return self._passed

    @property
    def did_not_terminate(self):
        """True if the particle hit the step limit without crashing or
        passing"""
        return self._did_not_terminate

    @property
    def non_finite(self):
        """True if the trajectory produced a non-finite state"""
        return self._non_finite

    @property
    def terminated(self):
        return (self._crashed or self._passed or self._non_finite
                or self._did_not_terminate)

    @property
    def outcome(self):
        """One of ``"non_finite"``, ``"crashed"``, ``"passed"``,
        ``"did_not_terminate"`` or ``"active"``"""
        if self._non_finite:
            return "non_finite"
        if self._crashed:
            return "crashed"
        if self._passed:
            return "passed"
        if self._did_not_terminate:
            return "did_not_terminate"
        return "active"

    @property
    def history(self):
        """List of ``(time, State)`` pairs in time order"""
        return list(zip(self._times, self._states))

    @property
    def times(self):
        return np.array(self._times)

    @property
    def states(self):
        return list(self._states)

    @property
    def initial_state(self):
        return self._states[0]

    @property
    def last_time(self):
        return self._times[-1]

    @property
    def last_state(self):
        return self._states[-1]

    def __len__(self):
        return len(self._states)

    def advance(self, t: float) -> State:
        """Take one integration step and record the new state at ``t``

        Parameters
        ----------
        t : `float`
            Time of the new state. Must be later than the most recent
            entry in the history.

        Returns
        -------
        :class:`State`
            The new state.

        Raises
        ------
        ValueError
            If ``t`` is not later than the last recorded time.
        """
        t = float(t)
        if not t > self._times[-1]:
            raise ValueError(f"Time {t} is not after the last recorded "
                             f"time {self._times[-1]}")
        new_state = self._integrator.step(self._states[-1], t)
        self._times.append(t)
        self._states.append(new_state)
        if not new_state.is_finite():
            self._non_finite = True
        elif not self.terminated:
            self.classify(new_state)
        return new_state

    def classify(self, state: State):
        """Update the crash / pass flags from the position in ``state``"""
        if not state.is_finite():
            self._non_finite = True
            return
        y, z = state.r
        if abs(y) >= self._params.R and z <= self._params.L:
            self._crashed = True
            return
        if z > self._params.L:
            self._passed = True

    def mark_did_not_terminate(self):
        """Record that the particle was stopped by the step limit"""
        if not self.terminated:
            self._did_not_terminate = True

    def __repr__(self):
        return (f"{self.__class__.__name__}({self.initial_state!r}, "
                f"outcome={self.outcome!r}, steps={len(self) - 1})")


def uniform_sampler(seed=None):
    """Returns a ``sample(min, max) -> float`` function

    The samples are drawn from :func:`numpy.random.default_rng`, so a
    fixed ``seed`` gives a reproducible sequence.
    """
    rng = np.random.default_rng(seed)

    def sample(low, high):
        return float(rng.uniform(low, high))

    return sample


def advance_bounded(particle: Particle):
    """Advance ``particle`` at ``t = k*dt`` for every ``t < T``

    Crashing or passing does not stop the particle; a non-finite state
    does.
    """
    dt = particle.params.dt
    T = particle.params.T
    step = 1
    while step * dt < T:
        particle.advance(step * dt)
        if particle.non_finite:
            break
        step += 1


def advance_unbounded(particle: Particle, max_steps=DEFAULT_MAX_STEPS):
    """Advance ``particle`` until it crashes, passes, goes non-finite,
    or runs out of steps"""
    dt = particle.params.dt
    for step in range(1, max_steps + 1):
        particle.advance(step * dt)
        if particle.terminated:
            return
    particle.mark_did_not_terminate()


def advance_chunk(particles, mode, max_steps):
    """Advance every particle of ``particles`` in the given run mode

    This is the unit of work of a worker process, so it is a module
    level function and returns the particles it advanced.
    """
    for particle in particles:
        if mode == "bounded":
            advance_bounded(particle)
        else:
            advance_unbounded(particle, max_steps)
    return particles


class Simulation:
    """Ensemble of particles sharing one set of field parameters

    This Class "owns" all the particles and drives each of them through
    the filter. Particles never interact, so they are advanced one at a
    time, or in parallel chunks when ``num_workers > 1``.

    Parameters
    ----------
    n_particles : `int`
        Number of particles in the ensemble.
    params : :class:`FieldParameters`
        Parameters shared by every particle.
    random_init : `bool`, optional
        If ``False`` (the default), every particle starts at ``r=(0, 0)``
        with ``v=(0, 3E/B)``. If ``True``, ``r.y`` is drawn from
        ``[-R, R]`` and ``v.z`` from ``velocity_band``.
    sampler : callable, optional
        ``sample(min, max) -> float`` used for randomized initial
        conditions. Defaults to :func:`uniform_sampler`.
    velocity_band : (`float`, `float`), optional
        Range of the randomized initial ``v.z``.
    max_steps : `int`, optional
        Maximum number of steps per particle in unbounded mode.
    num_workers : `int`, optional
        Number of worker processes used by :meth:`run`.
    print_progress : `bool`, optional
        If True, print the outcome of every particle.

    Attributes
    ----------
    particles : list of :class:`Particle`
        The particles of the ensemble.
    anomalies : list of (`int`, `str`)
        Index and outcome of particles that went non-finite or did not
        terminate, filled in by :meth:`run`.
    """

    _modes = {"bounded": "bounded", "b": "bounded",
              "unbounded": "unbounded", "c": "unbounded"}

    def __init__(self, n_particles: int, params: FieldParameters,
                 random_init=False, sampler=None,
                 velocity_band=(MIN_VELOCITY, MAX_VELOCITY),
                 max_steps=DEFAULT_MAX_STEPS, num_workers=1,
                 print_progress=False):
        if int(n_particles) < 1:
            raise ValueError("A simulation needs at least one particle")
        v_min, v_max = velocity_band
        if random_init and v_min > v_max:
            raise ValueError(f"Invalid velocity band ({v_min}, {v_max})")
        if int(max_steps) < 1:
            raise ValueError("max_steps must be at least 1")
        if int(num_workers) < 1:
            raise ValueError("num_workers must be at least 1")

        self._params = params
        self._crash_counter = 0
        self._has_run = False
        self.random_init = random_init
        self.velocity_band = (v_min, v_max)
        self.max_steps = int(max_steps)
        self.num_workers = int(num_workers)
        self.print_progress = print_progress
        self.anomalies = []

        if random_init and sampler is None:
            sampler = uniform_sampler()
        self._sampler = sampler

        self.particles = [Particle(self.initial_condition(), params)
                          for _ in range(int(n_particles))]

    @property
    def params(self):
        return self._params

    @property
    def crash_counter(self):
        return self._crash_counter

    @property
    def n_particles(self):
        return len(self.particles)

    def initial_condition(self) -> State:
        """Build the initial state of the next particle"""
        if self.random_init:
            R = self._params.R
            v_min, v_max = self.velocity_band
            y0 = self._sampler(-R, R)
            vz0 = self._sampler(v_min, v_max)
            return State(Vector2(y0, 0.0), Vector2(0.0, vz0))
        drift = self._params.E / self._params.B
        return State(Vector2(0.0, 0.0), Vector2(0.0, 3 * drift))

    def run(self, mode="bounded"):
        """
        Runs the simulation

        Parameters
        ----------
        mode : `str`
            ``"bounded"`` (or ``"b"``) advances every particle for the
            fixed horizon ``T``. ``"unbounded"`` (or ``"c"``) advances
            every particle until it crashes or passes, or until
            ``max_steps`` steps have been taken.

        Raises
        ------
        ValueError
            If the mode is not recognized.
        RuntimeError
            If the simulation has already been run.
        """
        try:
            mode = self._modes[str(mode).lower()]
        except KeyError:
            raise ValueError(f"Unknown run mode {mode!r}")
        if self._has_run:
            raise RuntimeError("Simulation has already been run")
        self._has_run = True

        print("Simulation is started")
        if self.num_workers == 1:
            advance_chunk(self.particles, mode, self.max_steps)
        else:
            self._run_in_processes(mode)
        self._crash_counter = sum(1 for p in self.particles if p.crashed)
        if self.print_progress:
            for i, particle in enumerate(self.particles):
                print(f"particle {i}: {particle.outcome}")

        self.anomalies = [(i, p.outcome) for i, p in enumerate(self.particles)
                          if p.outcome in ("non_finite", "did_not_terminate")]
        self.report_anomalies()
        print("Simulation complete")

    def _run_in_processes(self, mode):
        """Advance chunks of particles in worker processes

        Each worker receives pickled copies of its particles and returns
        them advanced; the copies replace the originals in
        :attr:`particles`.
        """
        chunks = np.array_split(np.arange(self.n_particles), self.num_workers)
        with ProcessPoolExecutor(max_workers=self.num_workers) as executor:
            futures = {}
            for chunk in chunks:
                if len(chunk) == 0:
                    continue
                batch = [self.particles[i] for i in chunk]
                future = executor.submit(advance_chunk, batch, mode,
                                         self.max_steps)
                futures[future] = chunk
            for future in as_completed(futures):
                for i, particle in zip(futures[future], future.result()):
                    self.particles[i] = particle

    def report_anomalies(self):
        """Warn about particles that went non-finite or did not
        terminate"""
        non_finite = [i for i, outcome in self.anomalies
                      if outcome == "non_finite"]
        stalled = [i for i, outcome in self.anomalies
                   if outcome == "did_not_terminate"]
        if non_finite:
            warnings.warn(f"{len(non_finite)} particle(s) reached a "
                          f"non-finite state: {non_finite[:10]}",
                          RuntimeWarning)
        if stalled:
            warnings.warn(f"{len(stalled)} particle(s) did not terminate "
                          f"within {self.max_steps} steps: {stalled[:10]}",
                          RuntimeWarning)

    def outcome_counts(self):
        """Number of particles with each outcome"""
        counts = {"crashed": 0, "passed": 0, "non_finite": 0,
                  "did_not_terminate": 0, "active": 0}
        for particle in self.particles:
            counts[particle.outcome] += 1
        return counts

    def __repr__(self):
        return (f"{self.__class__.__name__}({self.n_particles}, "
                f"{self._params}, random_init={self.random_init})")
