"""Sphinx configuration for libyeelight documentation."""

from __future__ import annotations

import os
import sys
from datetime import datetime

# Build against the working tree rather than an installed copy
sys.path.insert(0, os.path.abspath(".."))

from libyeelight import __version__  # noqa: E402

project = "libyeelight"
author = "libyeelight contributors"
copyright = f"{datetime.now().year}, {author}"
version = release = __version__

extensions = [
    "sphinx.ext.autodoc",
    "sphinx.ext.intersphinx",
    "sphinx.ext.viewcode",
    "sphinx.ext.napoleon",
    "sphinx_autodoc_typehints",
    "myst_parser",
]

exclude_patterns = ["_build"]
source_suffix = {
    ".rst": "restructuredtext",
    ".md": "markdown",
}
master_doc = "index"

# The package docstrings use Google style with fenced examples
autodoc_default_options = {
    "members": True,
    "member-order": "bysource",
    "special-members": "__init__",
    "show-inheritance": True,
}
autodoc_typehints = "description"
napoleon_google_docstring = True
napoleon_numpy_docstring = False
napoleon_include_init_with_doc = True

intersphinx_mapping = {
    "python": ("https://docs.python.org/3", None),
}

myst_enable_extensions = ["colon_fence"]

html_theme = "sphinx_rtd_theme"
html_theme_options = {"navigation_depth": 3}
