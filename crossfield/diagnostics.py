"""
Diagnostics for completed crossfield simulations

The :class:`OutcomeAnalyzer` computes ensemble statistics from a
:class:`Simulation` after it has run. The output utilities write
trajectories, initial conditions and histograms to file, and
:func:`trajectory_dataset` gives an :mod:`xarray` view of a single
trajectory.
"""
from abc import ABC, abstractmethod
from pathlib import Path
import numpy as np
import xarray as xr

from .core import Particle, Simulation
from .computetools import analytic_position

DEFAULT_NUM_BINS = 20

HISTORY_COLUMNS = ("t", "y", "z", "vy", "vz")

ANOMALIES = ("non_finite", "did_not_terminate")


class OutputUtility(ABC):
    """Abstract base class for output utility

    An instance of an OutputUtility buffers rows of data and writes them
    to a file when the diagnostic is finalized.
    """
    def __init__(self, filename, diagnostic_size, **kwargs):
        self._filename = filename
        self._buffer = np.zeros(diagnostic_size)
        self._buffer_index = 0

    def diagnose(self, data):
        """
        Adds 'data' into the output buffer.

        Parameters
        ----------
        data : :class:`numpy.ndarray`
            1D numpy array of values to be added to the buffer.
        """
        self._buffer[self._buffer_index, :] = data
        self._buffer_index += 1

    def finalize(self):
        """Write the buffered data to file."""
        Path(self._filename).parent.mkdir(parents=True, exist_ok=True)
        self._write_buffer()

    @abstractmethod
    def _write_buffer(self):
        pass


class CSVOutputUtility(OutputUtility):
    """Comma separated value (CSV) output helper class

    Parameters
    ----------
    filename : str
       File name for CSV data file.
    diagnostic_size : (int, int)
       Size of data set to be written to CSV file. First value is the
       number of rows. Second value is number of columns.
    header : sequence of str, optional
       Column names written as the first line of the file.
    """

    def __init__(self, filename, diagnostic_size, header=None, **kwargs):
        super().__init__(filename, diagnostic_size)
        self._header = ",".join(header) if header else ""

    def _write_buffer(self):
        with open(self._filename, 'wb') as f:
            np.savetxt(f, self._buffer[:self._buffer_index], delimiter=",",
                       header=self._header, comments="")


class NPYOutputUtility(OutputUtility):
    """NumPy formatted binary file (.npy) output helper class

    Parameters
    ----------
    filename : str
       File name for .npy data file.
    diagnostic_size : (int, int)
       Size of data set to be written to .npy file.
    """

    def _write_buffer(self):
        with open(self._filename, 'wb') as f:
            np.save(f, self._buffer[:self._buffer_index])


utilities = {
    "csv": CSVOutputUtility,
    "npy": NPYOutputUtility
}


class OutcomeAnalyzer:
    """Read-only statistics over a completed :class:`Simulation`

    Parameters
    ----------
    simulation : :class:`Simulation`
        A simulation whose :meth:`Simulation.run` has finished.
    """
    def __init__(self, simulation: Simulation):
        self._simulation = simulation

    def passing_percentage(self, exclude_anomalies=False):
        """Percentage of particles that did not crash

        Parameters
        ----------
        exclude_anomalies : `bool`, optional
            By default every particle that did not crash counts towards
            the percentage, including the ones that went non-finite or
            hit the step limit. If True, those particles are counted as
            not passing.
        """
        sim = self._simulation
        failed = sim.crash_counter
        if exclude_anomalies:
            failed += sum(1 for p in sim.particles
                          if not p.crashed and p.outcome in ANOMALIES)
        return 100 * (1 - failed / sim.n_particles)

    def exit_velocities(self):
        """Final ``v.z`` of every particle that passed the filter and
        stayed finite"""
        return np.array([p.last_state.v.z for p in self._simulation.particles
                         if p.outcome == "passed"])

    def normalized_exit_velocities(self):
        """Exit velocities rescaled to the interval [0, 1]

        If every exit velocity is the same, they all map to 0.
        """
        v = self.exit_velocities()
        if v.size == 0:
            return v
        span = v.max() - v.min()
        if span == 0:
            return np.zeros_like(v)
        return (v - v.min()) / span

    def exit_velocity_histogram(self, n_bins=DEFAULT_NUM_BINS):
        """Histogram of the normalized exit velocities

        Parameters
        ----------
        n_bins : `int`
            Number of equal width bins spanning [0, 1].

        Returns
        -------
        bin_edges : :class:`numpy.ndarray`
            The ``n_bins + 1`` bin edges.
        counts : :class:`numpy.ndarray`
            Number of passed particles in each bin.
        """
        if n_bins < 1:
            raise ValueError("n_bins must be at least 1")
        counts, bin_edges = np.histogram(self.normalized_exit_velocities(),
                                         bins=n_bins, range=(0.0, 1.0))
        return bin_edges, counts

    def initial_conditions(self, only_passed=False):
        """Rows of ``(y0 / R, vz0)`` for the particles of the ensemble"""
        R = self._simulation.params.R
        rows = [(p.initial_state.r.y / R, p.initial_state.v.z)
                for p in self._simulation.particles
                if p.outcome == "passed" or not only_passed]
        return np.array(rows).reshape(-1, 2)

    @staticmethod
    def error_against_analytic(particle: Particle):
        """Distance between the last position of ``particle`` and the
        closed form position at the same time"""
        expected = analytic_position(particle.last_time, particle.params)
        return (particle.last_state.r - expected).norm()

    def summary(self):
        sim = self._simulation
        result = {"n_particles": sim.n_particles,
                  "crash_counter": sim.crash_counter,
                  "passing_percentage": self.passing_percentage(),
                  "passing_percentage_excluding_anomalies":
                      self.passing_percentage(exclude_anomalies=True)}
        result.update(sim.outcome_counts())
        return result


def write_history_csv(particle: Particle, filename, output_type="csv"):
    """Write the trajectory of ``particle`` with columns t, y, z, vy, vz"""
    outputter = utilities[output_type](filename,
                                       (len(particle), len(HISTORY_COLUMNS)),
                                       header=HISTORY_COLUMNS)
    for t, state in particle.history:
        outputter.diagnose(np.concatenate(([t], state.as_array())))
    outputter.finalize()


def write_initial_conditions_csv(analyzer: OutcomeAnalyzer, filename,
                                 only_passed=False):
    """Write the normalized initial conditions of the ensemble"""
    rows = analyzer.initial_conditions(only_passed)
    outputter = CSVOutputUtility(filename, rows.shape, header=("y0/R", "vz0"))
    for row in rows:
        outputter.diagnose(row)
    outputter.finalize()


def write_histogram_csv(analyzer: OutcomeAnalyzer, filename,
                        n_bins=DEFAULT_NUM_BINS):
    """Write the exit velocity histogram with columns from, to, num"""
    bin_edges, counts = analyzer.exit_velocity_histogram(n_bins)
    outputter = CSVOutputUtility(filename, (n_bins, 3),
                                 header=("from", "to", "num"))
    for low, high, count in zip(bin_edges[:-1], bin_edges[1:], counts):
        outputter.diagnose([low, high, count])
    outputter.finalize()


def write_representative_histories(simulation: Simulation, directory):
    """Write the trajectory of the first passed and the first crashed
    particle, if there are any

    Returns
    -------
    list of :class:`pathlib.Path`
        The files that were written.
    """
    written = []
    for outcome in ("passed", "crashed"):
        for particle in simulation.particles:
            if particle.outcome == outcome:
                filename = (Path(directory)
                            / f"{simulation.params.method}_{outcome}.csv")
                write_history_csv(particle, filename)
                written.append(filename)
                break
    return written


def trajectory_dataset(particle: Particle) -> xr.Dataset:
    """Return the trajectory of ``particle`` as an :class:`xarray.Dataset`

    The dataset has a ``time`` coordinate and the variables ``y``,
    ``z``, ``vy`` and ``vz``.
    """
    data = np.array([state.as_array() for state in particle.states])
    long_names = {"y": "Lateral Position", "z": "Axial Position",
                  "vy": "Lateral Velocity", "vz": "Axial Velocity"}
    ds = xr.Dataset(coords={"time": ("time", particle.times)})
    ds.coords["time"].attrs["long_name"] = "Time"
    for i, name in enumerate(HISTORY_COLUMNS[1:]):
        ds[name] = ("time", data[:, i])
        ds[name].attrs["long_name"] = long_names[name]
    ds.attrs["method"] = particle.params.method
    ds.attrs["outcome"] = particle.outcome
    return ds
