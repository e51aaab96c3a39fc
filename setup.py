from setuptools import setup, find_packages

setup(
    name="claims-batching",
    version="0.1",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    python_requires=">=3.8",
    install_requires=[
        "asyncpg>=0.29",
        "pydantic>=2.5",
        "pydantic-settings>=2.1",
        "structlog>=23.2",
        "tenacity>=8.2",
        "JSON-log-formatter>=0.5",
    ],
    extras_require={
        "test": [
            "pytest>=7.4",
            "pytest-asyncio>=0.23",
            "pytest-mock>=3.12",
            "factory-boy>=3.3",
        ],
    },
    entry_points={
        "console_scripts": [
            "claims-batching=claims_batching.cli:main",
        ],
    },
)
