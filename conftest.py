from pathlib import Path
import shutil


def pytest_unconfigure():
    """Removes the output directory of the example script after testing"""
    parent = Path(__file__).parents[0]
    output = parent / "default_output"
    if output.is_dir():
        shutil.rmtree(output.resolve())
