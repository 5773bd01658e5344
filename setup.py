#!/usr/bin/python3
# Setup file for dumbclone
# Copyright (C) 2025 Dumbclone contributors
# SPDX-License-Identifier: Apache-2.0 OR GPL-2.0-or-later

from setuptools import setup

tests_require = ["gevent"]

setup(
    name="dumbclone",
    version="0.1.0",
    description="Recover git repositories from web servers exposing their .git directory",
    long_description=(
        "dumbclone fetches the loose objects of a git repository served over "
        "dumb HTTP(S), walking commits, trees and tags from a start commit, "
        "and writes them into a local git object store."
    ),
    author="Dumbclone contributors",
    license="Apache-2.0 OR GPL-2.0-or-later",
    python_requires=">=3.9",
    packages=["dumbclone"],
    package_data={"": ["py.typed"]},
    install_requires=["urllib3>=2.2.2"],
    extras_require={
        "greenthreads": ["gevent"],
        "test": tests_require,
    },
    entry_points={
        "console_scripts": ["dumbclone=dumbclone.cli:_main"],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Programming Language :: Python :: 3",
        "Operating System :: POSIX",
        "Topic :: Software Development :: Version Control",
    ],
)
