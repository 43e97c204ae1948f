"""Setup script for ADIF Ledger."""

from setuptools import find_packages, setup

setup(
    name="adif-ledger",
    version="0.1.0",
    description="ADIF logbook with natural-key dedup and merge-on-import",
    packages=find_packages(exclude=("tests", "tests.*")),
    python_requires=">=3.11",
    install_requires=[
        "sqlmodel>=0.0.16",
        "sqlalchemy>=2.0",
        "platformdirs",
        "typer",
        "rich",
    ],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "adif-ledger=adif_ledger.cli:main",
        ],
    },
    zip_safe=False,
)
