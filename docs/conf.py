import os
import sys

sys.path.insert(0, os.path.abspath('..'))

project = 'GES CRM'
copyright = '2026, GES CRM developers'
author = 'GES CRM developers'
release = '1.0'


extensions = [
    'sphinx.ext.autodoc',
    'sphinx.ext.viewcode',
    'sphinx.ext.napoleon'
]

autodoc_mock_imports = ['psycopg2']
autodoc_member_order = 'bysource'
autodoc_default_options = {'members': True, 'undoc-members': False}
napoleon_google_docstring = True
napoleon_numpy_docstring = False

exclude_patterns = ['_build']
language = 'tr'


html_theme = 'sphinx_rtd_theme'
html_title = 'GES CRM API'
