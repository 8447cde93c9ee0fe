"""Pytest configuration: documentation code blocks run through Sybil."""

from os import chdir
from pathlib import Path
from tempfile import TemporaryDirectory
from typing import Any

from sybil import Sybil
from sybil.parsers.markdown import PythonCodeBlockParser, SkipParser


def documentation_setup(namespace: dict[str, Any]) -> None:
    """Run each documentation page inside its own temporary directory."""
    tmpdir = TemporaryDirectory(prefix="bgc_engine-docs-")
    namespace["_docs_tmpdir"] = tmpdir
    namespace["_docs_cwd"] = Path.cwd()
    chdir(tmpdir.name)


def documentation_teardown(namespace: dict[str, Any]) -> None:
    """Return to the original directory and remove the temporary one."""
    chdir(namespace.pop("_docs_cwd"))
    namespace.pop("_docs_tmpdir").cleanup()


pytest_collect_file = Sybil(
    parsers=[
        PythonCodeBlockParser(),
        SkipParser(),
    ],
    path=str(Path(__file__).parent / "docs"),
    pattern="**/*.md",
    setup=documentation_setup,
    teardown=documentation_teardown,
).pytest()
