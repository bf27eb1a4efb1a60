"""Tests for the velocity_filter.py example script"""
import pytest
import numpy as np
import velocity_filter


@pytest.fixture(name='output_directory')
def output_directory_fixt(tmp_path, monkeypatch):
    directory = tmp_path / "default_output"
    monkeypatch.setattr(velocity_filter, "output_directory", str(directory))
    return directory


def test_convergence_stage(output_directory):
    errors = velocity_filter.main(["velocity_filter.py", "b"])
    assert set(errors) == {"Euler", "Midpoint", "RungeKutta4"}
    for method in errors:
        assert (output_directory / f"{method}.csv").is_file()


def test_filter_stage(output_directory, tmp_path):
    input_file = tmp_path / "small.toml"
    input_file.write_text(
        "[Clock]\n"
        "dt = 0.01\n"
        "[Filter]\n"
        "R = 0.05\n"
        "L = 1.0\n"
        "[Integrator]\n"
        'method = "Midpoint"\n'
        "[Particles]\n"
        "n = 20\n"
        "random = true\n"
        "v_min = 0.9\n"
        "v_max = 1.1\n"
        "seed = 1\n")
    result = velocity_filter.main(["velocity_filter.py", "c",
                                   str(input_file)])
    assert result["n_particles"] == 20
    assert 0 <= result["passing_percentage"] <= 100
    assert len(result["counts"]) == 20
    histogram = np.loadtxt(output_directory / "final_velocity_histogram.csv",
                           delimiter=",", skiprows=1)
    assert np.allclose(histogram[:, 2], result["counts"])
    assert (output_directory / "initial_conditions.csv").is_file()


def test_unknown_stage_should_exit():
    with pytest.raises(SystemExit):
        velocity_filter.main(["velocity_filter.py", "x"])
