"""
DocSpace setup.py — Package configuration and CLI entry point.
"""

from setuptools import find_packages, setup

setup(
    name="docspace",
    version="1.0.0",
    description="DocSpace — multi-tenant document workspace core",
    packages=find_packages(include=["docspace", "docspace.*"]),
    python_requires=">=3.11",
    entry_points={
        "console_scripts": [
            "docspace=docspace.cli:main",
        ],
    },
    install_requires=[
        "sqlalchemy>=2.0",
        "psycopg2-binary>=2.9",
        "pydantic>=2.5",
        "redis>=5.0",
        "celery[redis]>=5.3",
        "pyyaml>=6.0",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
        ],
    },
)
