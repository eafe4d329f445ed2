#!/usr/bin/env python3

# python setup.py sdist --format=zip,gztar

import os
import sys

from setuptools import setup

if sys.version_info[:3] < (3, 10, 0):
    sys.exit("Error: ElectrumKB requires Python version >= 3.10.0...")

with open('contrib/requirements/requirements.txt') as f:
    requirements = f.read().splitlines()

with open('contrib/requirements/requirements-pytest.txt') as f:
    requirements_test = f.read().splitlines()

def read_version():
    # Avoid importing the package, its dependencies may not be installed yet.
    version = {}
    with open(os.path.join('electrumkb', 'version.py')) as f:
        exec(f.read(), version)
    return version['PACKAGE_VERSION']

setup(
    name="ElectrumKB",
    version=read_version(),
    python_requires=">=3.10",
    install_requires=requirements,
    extras_require={
        'test': requirements_test,
    },
    packages=[
        'electrumkb',
        'electrumkb.util',
    ],
    package_data={
        'electrumkb': [
            'data/servers.json',
            'data/servers_testnet.json',
            'data/servers_regtest.json',
        ]
    },
    description="Lightweight Electrum protocol client",
    author="The ElectrumSV Developers",
    license="MIT Licence",
    long_description="""Electrum protocol client with an extended transaction codec"""
)
