"""
This module configures the package for distribution and installation.
"""

from setuptools import setup, find_packages

setup(
    name="pydeepzoom",
    version="0.0.0",
    packages=find_packages(exclude=["tests"]),
    install_requires=["mpmath", "numpy", "pillow"],
    extras_require={"test": ["pytest"]},
    entry_points={
        "console_scripts": [
            "pydeepzoom = pydeepzoom.__main__:main",
        ]
    },
)
