"""
Pytest configuration for the date restore tests.

Test docstrings are used as display names in reports, and the header shows
the versions of the imaging libraries the tests run against.
"""

import piexif
import PIL


def _docstring_summary(function):
    """First non-empty docstring line of a test function, if any."""
    for line in (function.__doc__ or "").strip().splitlines():
        if line.strip():
            return line.strip()
    return None


def pytest_report_header(config):
    return f"piexif {piexif.VERSION}, Pillow {PIL.__version__}"


def pytest_collection_modifyitems(items):
    """Replace node ids with human-readable docstring summaries."""
    for item in items:
        summary = _docstring_summary(item.function)
        if summary is None:
            continue

        # Parametrized tests keep their parameter id suffix
        parameter_start = item.nodeid.find("[")
        parameter_part = item.nodeid[parameter_start:] if parameter_start != -1 else ""
        item._nodeid = summary + parameter_part
