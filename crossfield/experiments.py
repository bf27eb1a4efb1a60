"""
Experiment drivers

- :func:`convergence_study` runs one deterministic particle per
  integration method and time step for one cyclotron period, and
  measures the distance to the closed form solution.
- :func:`filter_study` sends a randomized ensemble through the filter
  and reports the passing percentage and the exit velocity histogram.
"""
from pathlib import Path
import numpy as np
from scipy import stats

from .core import (DEFAULT_MAX_STEPS, FIELDS_RATIO, MAX_VELOCITY,
                   MIN_VELOCITY, PROTON_CHARGE, PROTON_MASS,
                   FieldParameters, Simulation, uniform_sampler)
from .diagnostics import (DEFAULT_NUM_BINS, OutcomeAnalyzer,
                          write_histogram_csv, write_history_csv,
                          write_initial_conditions_csv,
                          write_representative_histories)

DEFAULT_METHODS = ("Euler", "Midpoint", "RungeKutta4")
DEFAULT_DTS = (0.04, 0.02, 0.01, 0.005)


def proton_filter_parameters(method="RungeKutta4", dt=1e-10):
    """Parameters of a proton velocity filter tuned to ``FIELDS_RATIO``

    A 1 T magnetic field with ``E = FIELDS_RATIO`` selects protons
    moving at ``E/B``, inside a filter of radius 3 mm and length 1 m.
    """
    return FieldParameters(E=FIELDS_RATIO, B=1.0, m=PROTON_MASS,
                           q=PROTON_CHARGE, dt=dt, R=0.003, L=1.0,
                           method=method)


def convergence_study(params=None, dts=DEFAULT_DTS, methods=DEFAULT_METHODS,
                      output_directory=None):
    """Measure the error of each method against the closed form solution

    Parameters
    ----------
    params : :class:`FieldParameters`, optional
        Base parameters; ``dt`` and ``method`` are replaced for every
        run. Defaults to ``FieldParameters()``.
    dts : sequence of `float`
        Time steps to try.
    methods : sequence of `str`
        Integration methods to try.
    output_directory : `str` or :class:`pathlib.Path`, optional
        If given, the trajectory computed with the smallest time step is
        written to ``<method>.csv`` for every method.

    Returns
    -------
    `dict` [`str`, :class:`numpy.ndarray`]
        Final position error for each method, one entry per time step.
    """
    if params is None:
        params = FieldParameters()
    errors = {}
    for method in methods:
        method_errors = []
        particle = None
        for dt in dts:
            sim = Simulation(1, params.replace(dt=dt, method=method))
            sim.run("bounded")
            particle = sim.particles[0]
            method_errors.append(OutcomeAnalyzer.error_against_analytic(
                particle))
        errors[method] = np.array(method_errors)
        print(f"{method}: errors {errors[method]}")
        if output_directory is not None and particle is not None:
            write_history_csv(particle, Path(output_directory)
                              / f"{method}.csv")
    return errors


def estimate_order(dts, errors):
    """Observed order of convergence

    The slope of a least squares fit of ``log(error)`` against
    ``log(dt)``.
    """
    fit = stats.linregress(np.log(np.asarray(dts, dtype=float)),
                           np.log(np.asarray(errors, dtype=float)))
    return fit.slope


def filter_study(params=None, n_particles=1000,
                 velocity_band=(MIN_VELOCITY, MAX_VELOCITY), seed=None,
                 max_steps=DEFAULT_MAX_STEPS, num_workers=1,
                 n_bins=DEFAULT_NUM_BINS, output_directory=None):
    """Monte-Carlo study of the filter efficiency

    Parameters
    ----------
    params : :class:`FieldParameters`, optional
        Defaults to :func:`proton_filter_parameters`.
    n_particles : `int`
        Size of the ensemble.
    velocity_band : (`float`, `float`)
        Range of the initial axial velocity.
    seed : `int`, optional
        Seed of the uniform sampler.
    max_steps : `int`
        Step limit of each particle.
    num_workers : `int`
        Number of worker processes.
    n_bins : `int`
        Number of bins of the exit velocity histogram.
    output_directory : `str` or :class:`pathlib.Path`, optional
        If given, the histogram, the initial conditions of the passed
        particles and one passed and one crashed trajectory are written
        there as CSV files.

    Returns
    -------
    `dict`
        The :meth:`OutcomeAnalyzer.summary` of the run, with the
        additional keys ``"bin_edges"`` and ``"counts"``.
    """
    if params is None:
        params = proton_filter_parameters()
    sim = Simulation(n_particles, params, random_init=True,
                     sampler=uniform_sampler(seed),
                     velocity_band=velocity_band, max_steps=max_steps,
                     num_workers=num_workers)
    sim.run("unbounded")
    return report_filter_run(sim, n_bins, output_directory)


def report_filter_run(simulation, n_bins=DEFAULT_NUM_BINS,
                      output_directory=None):
    """Summarize a finished filter run and optionally write its output

    Parameters
    ----------
    simulation : :class:`Simulation`
        A simulation whose unbounded run has finished.
    n_bins : `int`
        Number of bins of the exit velocity histogram.
    output_directory : `str` or :class:`pathlib.Path`, optional
        If given, ``final_velocity_histogram.csv``,
        ``initial_conditions.csv`` (passed particles only) and one passed
        and one crashed trajectory are written there.

    Returns
    -------
    `dict`
        The :meth:`OutcomeAnalyzer.summary` of the run, with the
        additional keys ``"bin_edges"`` and ``"counts"``.
    """
    analyzer = OutcomeAnalyzer(simulation)
    result = analyzer.summary()
    result["bin_edges"], result["counts"] = \
        analyzer.exit_velocity_histogram(n_bins)
    print(f"percentage of survivors: {result['passing_percentage']:.4f}")

    if output_directory is not None:
        directory = Path(output_directory)
        write_histogram_csv(analyzer, directory
                            / "final_velocity_histogram.csv", n_bins)
        write_initial_conditions_csv(analyzer, directory
                                     / "initial_conditions.csv",
                                     only_passed=True)
        write_representative_histories(simulation, directory)
    return result
