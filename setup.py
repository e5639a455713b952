#!/usr/bin/env python3
#
# settee: a lightweight Couch client with revision tracking
# Copyright (C) 2011-2016 Novacut Inc
#
# This file is part of `settee`.
#
# `settee` is free software: you can redistribute it and/or modify it under
# the terms of the GNU Lesser General Public License as published by the Free
# Software Foundation, either version 3 of the License, or (at your option) any
# later version.
#
# `settee` is distributed in the hope that it will be useful, but WITHOUT
# ANY WARRANTY; without even the implied warranty of MERCHANTABILITY or FITNESS
# FOR A PARTICULAR PURPOSE.  See the GNU Lesser General Public License for more
# details.
#
# You should have received a copy of the GNU Lesser General Public License along
# with `settee`.  If not, see <http://www.gnu.org/licenses/>.
#
# Authors:
#   Jason Gerard DeRose <jderose@novacut.com>
#

"""
Install `settee`.
"""

import sys
if sys.version_info < (3, 4):
    sys.exit('Settee requires Python 3.4 or newer')

from setuptools import setup, Command
import os
from os import path
import re


tree = path.dirname(path.abspath(__file__))


def read_version():
    # Don't import settee here, degu might not be installed yet:
    with open(path.join(tree, 'settee', '__init__.py'), 'r') as fp:
        match = re.search(r"^__version__ = '([^']+)'$", fp.read(), re.M)
    if match is None:
        raise RuntimeError('cannot find __version__ in settee/__init__.py')
    return match.group(1)


class Test(Command):
    description = 'run unit tests and doc tests'

    user_options = [
        ('skip-all', None, 'skip all tests'),
        ('no-live', None, 'skip live tests against tmp CouchDB instances'),
    ]

    def initialize_options(self):
        self.skip_all = 0
        self.no_live = 0

    def finalize_options(self):
        pass

    def run(self):
        if self.skip_all:
            sys.exit(0)
        if self.no_live:
            os.environ['SETTEE_TEST_NO_LIVE'] = 'true'
        from settee.tests.run import run_tests
        if not run_tests():
            raise SystemExit('2')


setup(
    name='settee',
    description='a lightweight Couch client with revision tracking',
    version=read_version(),
    author='Jason Gerard DeRose',
    author_email='jderose@novacut.com',
    license='LGPLv3+',
    packages=['settee', 'settee.tests'],
    install_requires=['dbase32', 'degu'],
    python_requires='>=3.4',
    cmdclass={'test': Test},
)
