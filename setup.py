#!/usr/bin/env python

# Todo list to prepare a release:
#  - run: pytest tests
#  - edit cfuzz/version.py: check/set version
#  - edit ChangeLog: set release date
#  - git commit and git tag cfuzz-x.y
#  - python -m build and upload the tarball to the Python Package Index
#
# After the release:
#  - edit cfuzz/version.py: set version to n+1
#  - edit ChangeLog: add a new empty section for version n+1

import importlib.util
from glob import glob
from os import path

from setuptools import setup

CLASSIFIERS = [
    'Intended Audience :: Developers',
    'Development Status :: 3 - Alpha',
    'Environment :: Console',
    'License :: OSI Approved :: GNU General Public License (GPL)',
    'Operating System :: OS Independent',
    'Natural Language :: English',
    'Programming Language :: C',
    'Programming Language :: Python',
    'Programming Language :: Python :: 3',
    'Topic :: Software Development :: Compilers',
    'Topic :: Software Development :: Testing',
]

MODULES = ("cfuzz",)

SCRIPTS = glob("scripts/cfuzz*")


def load_version():
    spec = importlib.util.spec_from_file_location("version", path.join("cfuzz", "version.py"))
    version = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(version)
    return version


def main():
    cfuzz = load_version()
    PACKAGES = {}
    for name in MODULES:
        PACKAGES[name] = name.replace(".", "/")

    with open('README.rst') as fp:
        long_description = fp.read()
    with open('ChangeLog') as fp:
        long_description += fp.read()

    install_options = {
        "name": cfuzz.PACKAGE,
        "version": cfuzz.VERSION,
        "url": cfuzz.WEBSITE,
        "download_url": cfuzz.WEBSITE,
        "description": "Seed-driven random C program generator for compiler testing",
        "long_description": long_description,
        "classifiers": CLASSIFIERS,
        "license": cfuzz.LICENSE,
        "packages": list(PACKAGES.keys()),
        "package_dir": PACKAGES,
        "scripts": SCRIPTS,
        "python_requires": ">=3.9",
        "install_requires": ["python-ptrace>=0.7"],
        "extras_require": {"test": ["pytest"]},
    }
    setup(**install_options)

if __name__ == "__main__":
    main()
