"""Tests for crossfield/constructors.py"""
import pytest
from crossfield.core import MAX_VELOCITY, MIN_VELOCITY, Simulation
from crossfield.constructors import (construct_simulation,
                                     construct_simulation_from_toml)


@pytest.fixture(name='input_data')
def input_data_fixt():
    """Configuration dictionary for a small randomized run"""
    return {"Fields": {"E": 2.0, "B": 0.5, "m": 1.0, "q": 1.0},
            "Clock": {"dt": 0.02, "num_periods": 2},
            "Filter": {"R": 0.5, "L": 3.0},
            "Integrator": {"method": "Midpoint"},
            "Particles": {"n": 4, "random": True, "v_min": 3.0,
                          "v_max": 5.0, "seed": 7, "max_steps": 500,
                          "num_workers": 2}}


def test_construct_simulation_from_dict(input_data):
    sim = construct_simulation(input_data)
    assert isinstance(sim, Simulation)
    assert sim.n_particles == 4
    assert sim.params.E == 2.0
    assert sim.params.B == 0.5
    assert sim.params.dt == 0.02
    assert sim.params.num_periods == 2
    assert sim.params.R == 0.5
    assert sim.params.L == 3.0
    assert sim.params.method == "Midpoint"
    assert sim.random_init
    assert sim.velocity_band == (3.0, 5.0)
    assert sim.max_steps == 500
    assert sim.num_workers == 2
    for particle in sim.particles:
        y0 = particle.initial_state.r.y
        vz0 = particle.initial_state.v.z
        assert -0.5 <= y0 <= 0.5
        assert 3.0 <= vz0 <= 5.0


def test_seed_makes_construction_reproducible(input_data):
    first = construct_simulation(input_data)
    second = construct_simulation(input_data)
    assert ([p.initial_state for p in first.particles]
            == [p.initial_state for p in second.particles])


def test_construct_simulation_uses_defaults():
    sim = construct_simulation({"Particles": {"n": 2}})
    assert not sim.random_init
    assert sim.velocity_band == (MIN_VELOCITY, MAX_VELOCITY)
    assert sim.params.method == "Euler"
    for particle in sim.particles:
        assert particle.initial_state.v.z == 3.0


def test_construct_simulation_should_require_particle_count():
    input_data = {"Fields": {"E": 1.0}}
    with pytest.raises(KeyError):
        construct_simulation(input_data)
    assert input_data == {"Fields": {"E": 1.0}}


def test_construct_simulation_leaves_input_unchanged(input_data):
    expected = {section: dict(values)
                for section, values in input_data.items()}
    construct_simulation(input_data)
    assert input_data == expected


def test_construct_simulation_should_reject_unknown_method(input_data):
    input_data["Integrator"]["method"] = "Leapfrog"
    with pytest.raises(ValueError):
        construct_simulation(input_data)


def test_construct_simulation_from_toml(tmp_path):
    input_file = tmp_path / "filter.toml"
    input_file.write_text(
        "[Fields]\n"
        "E = 1.0\n"
        "B = 1.0\n"
        "\n"
        "[Clock]\n"
        "dt = 0.01\n"
        "\n"
        "[Filter]\n"
        "R = 0.003\n"
        "L = 1.0\n"
        "\n"
        "[Integrator]\n"
        'method = "RK4"\n'
        "\n"
        "[Particles]\n"
        "n = 3\n"
        "random = true\n"
        "v_min = 0.9\n"
        "v_max = 1.1\n"
        "seed = 11\n")
    sim = construct_simulation_from_toml(str(input_file))
    assert sim.n_particles == 3
    assert sim.params.method == "RK4"
    assert sim.params.R == 0.003
    assert sim.random_init
    sim.run("unbounded")
    assert sim.crash_counter + sim.outcome_counts()["passed"] == 3
