"""Make ``import filemanager`` resolve to this checkout.

The package is laid out flat at the repository root and the tests patch its
module globals (``filemanager.config.TEMP_ROOT`` and friends), so they must
import the working copy rather than an installed build. The ``pytest``
console script does not always put the repository root on sys.path.
"""

from __future__ import annotations

import sys
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parent.parent
PROJECT_ROOT_STR = str(PROJECT_ROOT)

if PROJECT_ROOT_STR not in sys.path:
    sys.path.insert(0, PROJECT_ROOT_STR)
