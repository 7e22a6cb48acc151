#!/usr/bin/env python
"""
pytest plugin script.

This script is an extension to pytest which
installs SQLAlchemy's testing plugin into the local environment.

"""
import os
import sys

import pytest

collect_ignore_glob = []

# this requires that sqlalchemy.testing was not already
# imported in order to work
pytest.register_assert_rewrite("sqlalchemy.testing.assertions")


if not sys.flags.no_user_site:
    # this is needed so that plain "pytest" works against the source
    # checkout without an install.  We have ./lib/, so punch that in.
    # We check no_user_site to honor the use of this flag.
    sys.path.insert(
        0,
        os.path.abspath(
            os.path.join(
                os.path.dirname(os.path.abspath(__file__)), "..", "lib"
            )
        ),
    )

from sqlalchemy.testing.plugin.pytestplugin import *  # noqa
