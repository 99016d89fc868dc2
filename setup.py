#!/usr/bin/env python3
# -*- coding: utf-8 -*-

# Standard library
import os
import re
from setuptools import setup, find_packages


# Read version without importing package
with open(os.path.join("lfsync", "version.py")) as fp:
    version = re.search(r'__version__ = "([^"]+)"', fp.read()).group(1)

# List of packages
pkgs = find_packages(exclude=("test", "test.*"))

# Create the build
setup(
    name="lfsync",
    packages=pkgs,
    python_requires=">=3.8",
    install_requires=[
        "PyYAML",
        "httpx",
    ],
    extras_require={
        "test": [
            "pytest",
        ],
    },
    description="Git add-on to store large files on an LFS server",
    entry_points={
        "console_scripts": [
            "lfsync=lfsync.cli:main",
        ]
    },
    version=version)
