"""Helper functions for constructing Simulations"""
import qtoml as toml

from .core import (DEFAULT_MAX_STEPS, MAX_VELOCITY, MIN_VELOCITY,
                   FieldParameters, Simulation, uniform_sampler)


def construct_simulation(input_data: dict) -> Simulation:
    """Construct a Simulation instance from a configuration dictionary

    Parameters
    ----------
    input_data : `dict`
        Each key describes a section, and the value is another
        dictionary with the needed parameters for that section.

        ``"Fields"``, ``"Clock"``, ``"Filter"``, ``"Integrator"``
            Passed to :meth:`FieldParameters.from_input`.
        ``"Particles"``
            - ``"n"`` : number of particles (`int`), required
            - ``"random"`` : `bool`, optional, default is ``False``
            - ``"v_min"``, ``"v_max"`` : velocity band (`float`),
              optional
            - ``"seed"`` : seed of the uniform sampler (`int`), optional
            - ``"max_steps"`` : unbounded mode step limit (`int`),
              optional
            - ``"num_workers"`` : number of worker processes (`int`),
              optional

    Returns
    -------
    simulation_instance : `Simulation`
    """
    particles = input_data.get("Particles", {})
    if "n" not in particles:
        raise KeyError("Particles configuration for n not found.")

    params = FieldParameters.from_input(input_data)
    random_init = particles.get("random", False)
    sampler = None
    if random_init:
        sampler = uniform_sampler(particles.get("seed", None))

    return Simulation(particles["n"], params,
                      random_init=random_init,
                      sampler=sampler,
                      velocity_band=(particles.get("v_min", MIN_VELOCITY),
                                     particles.get("v_max", MAX_VELOCITY)),
                      max_steps=particles.get("max_steps", DEFAULT_MAX_STEPS),
                      num_workers=particles.get("num_workers", 1),
                      print_progress=particles.get("print_progress", False))


def construct_simulation_from_toml(filename: str) -> Simulation:
    """Construct a Simulation instance from a toml input file

    Parameters
    ----------
    filename : `str`
        The name of the file which contains the input configuration, in
        `toml` format.

    Returns
    -------
    simulation_instance : `Simulation`
        An instance of the Simulation class, initialized using the data
        in the input file, which was converted into a python dictionary.
    """
    with open(filename) as f:
        input_data = toml.load(f)

    return construct_simulation(input_data)
