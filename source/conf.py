# Sphinx configuration for the glustermgmt.py documentation.
#
# Build with: sphinx-build -b html source build/html
# (pip install -e '.[docs]' first)

import os
import sys

# Document the package from the working tree rather than an installed copy.
sys.path.insert(0, os.path.abspath('..'))

from glustermgmt.aio.client import __version__  # noqa: E402

project = 'glustermgmt.py'
copyright = '2026, The glustermgmt Authors'
author = 'The glustermgmt Authors'
version = release = __version__

extensions = [
    'sphinx.ext.autodoc',
    'sphinx.ext.napoleon',
    'sphinx.ext.viewcode',
    'sphinx_autodoc_typehints',
    'myst_parser',
]

source_suffix = {
    '.rst': 'restructuredtext',
    '.md': 'markdown',
}
root_doc = 'index'
exclude_patterns = []

html_theme = 'furo'
html_title = f'glustermgmt.py {release}'

autodoc_member_order = 'bysource'
autodoc_default_options = {
    'members': True,
    'show-inheritance': True,
}
# aiohttp is only needed by the HTTP executor.
autodoc_mock_imports = ['aiohttp']

typehints_fully_qualified = False
typehints_defaults = 'comma'
typehints_use_rtype = True
simplify_optional_unions = True
