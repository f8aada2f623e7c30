"""
Setup script for catalog-sync.

catalog-sync keeps a chunked snapshot of remote Helm chart indexes
synchronized with declarative repository descriptors.

Installation:
    pip install -e .            # runtime
    pip install -e ".[test]"    # with test dependencies
"""

from setuptools import find_packages, setup

setup(
    name="catalog-sync",
    version="0.4.0",
    description=(
        "Reconciliation controller publishing chunked Helm catalog indexes "
        "from git and HTTP chart repositories"
    ),
    python_requires=">=3.9",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    install_requires=[
        "httpx>=0.24",
        "pydantic>=2.5",
        "PyYAML>=6.0",
        "packaging>=23.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
        ],
    },
)
