"""Pytest configuration for executing the documentation examples."""

import os
from pathlib import Path
from tempfile import TemporaryDirectory
from typing import Any

import numpy as np
from sybil import Sybil
from sybil.parsers.markdown import PythonCodeBlockParser, SkipParser

DOCS_DIR = Path(__file__).parent / "docs"


def documentation_setup(namespace: dict[str, Any]) -> None:
    """Run each documentation page from a scratch directory with numpy preloaded."""
    scratch = TemporaryDirectory()
    namespace["_scratch"] = scratch
    namespace["_previous_cwd"] = Path.cwd()
    namespace["np"] = np
    os.chdir(scratch.name)


def documentation_teardown(namespace: dict[str, Any]) -> None:
    """Restore the working directory and remove the scratch directory."""
    os.chdir(namespace["_previous_cwd"])
    namespace["_scratch"].cleanup()


pytest_collect_file = Sybil(
    parsers=[
        PythonCodeBlockParser(),
        SkipParser(),
    ],
    path=str(DOCS_DIR),
    pattern="**/*.md",
    setup=documentation_setup,
    teardown=documentation_teardown,
).pytest()
