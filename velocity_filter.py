"""Run the convergence study ("b") or the filter study ("c")

Usage::

    python velocity_filter.py b
    python velocity_filter.py c [input.toml]
"""
import sys

from crossfield import (convergence_study, construct_simulation_from_toml,
                        estimate_order, report_filter_run)
from crossfield.experiments import DEFAULT_DTS

output_directory = "default_output"


def run_convergence_study():
    errors = convergence_study(output_directory=output_directory)
    for method, method_errors in errors.items():
        print(f"{method}: observed order "
              f"{estimate_order(DEFAULT_DTS, method_errors):.2f}")
    return errors


def run_filter_study(input_file="velocity_filter.toml"):
    sim = construct_simulation_from_toml(input_file)
    sim.run("unbounded")
    return report_filter_run(sim, output_directory=output_directory)


def main(argv):
    stage = argv[1].lower() if len(argv) > 1 else "c"
    if stage == "b":
        return run_convergence_study()
    if stage == "c":
        return run_filter_study(*argv[2:3])
    raise SystemExit(f"Unknown stage {argv[1]!r}, expected 'b' or 'c'")


if __name__ == "__main__":
    main(sys.argv)
