"""Setup script for the deploy engine."""

from setuptools import find_packages, setup

with open("requirements.txt") as f:
    requirements = f.read().splitlines()

setup(
    name="deploy-engine",
    version="1.0.0",
    description="Declarative deployment reconciliation engine with rollback",
    author="Deploy Engine Maintainers",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    install_requires=requirements,
    extras_require={
        "test": [
            "pytest>=8.0",
            "pytest-asyncio>=0.23",
        ],
    },
    python_requires=">=3.11",
    entry_points={
        "console_scripts": [
            "deploy-engine=deploy_engine.__main__:main",
        ],
    },
)
