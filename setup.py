"""Setup configuration for mqplay."""

from setuptools import setup, find_packages

TEST_REQUIRES = [
    "pytest>=7.4.0",
    "pytest-asyncio>=0.23.0",
    "pytest-cov>=4.1.0",
    "pytest-mock>=3.12.0",
]

setup(
    name="mqplay",
    version="0.1.0",
    description="Supervised fanout pub/sub client for RabbitMQ",
    author="mqplay developers",
    license="MIT",
    packages=find_packages(include=["mqplay", "mqplay.*"]),
    python_requires=">=3.10",
    install_requires=[
        "aio-pika>=9.4.0",
        "pydantic>=2.5.0",
        "pydantic-settings>=2.1.0",
        "ulid-py>=1.1.0",
        "PyYAML>=6.0",
        "prometheus-client>=0.19.0",
        "opentelemetry-api>=1.22.0",
        "opentelemetry-sdk>=1.22.0",
        "opentelemetry-exporter-otlp>=1.22.0",
        "click>=8.1.0",
    ],
    extras_require={
        "test": TEST_REQUIRES,
        "dev": TEST_REQUIRES + [
            "black>=23.12.0",
            "ruff>=0.1.0",
            "mypy>=1.8.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "mqplay=mqplay.cli:main",
        ],
    },
)
