#! /usr/bin/env python3

"""Script which automatically adds the folder containing this script to
PYTHONPATH and then runs gaialink's CLI.

Note that this file is NOT `gaialink.py` to keep the `gaialink` name referring
to the module.
"""

import os, sys
_path = os.path.dirname(os.path.abspath(__file__))

os.environ['PYTHONPATH'] = _path + ':' + os.environ.get('PYTHONPATH', '')
sys.path.insert(0, _path)
from gaialink.cli import app
app()
