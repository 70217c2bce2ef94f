#!/usr/bin/env python3
"""
Setup script for retcon
"""

from setuptools import setup, find_namespace_packages

setup(
    name="retcon",
    version="0.0.1",
    description="Layered configuration registry and one-shot websocket client bootstrap",
    packages=find_namespace_packages(include=["shared", "shared.*", "registry", "registry.*", "client", "client.*"]),
    install_requires=[
        "websockets>=15.0",
        "typer>=0.12.3",
        "rich>=13.9.2",
        "PyYAML>=6.0.1",
    ],
    extras_require={
        "test": [
            "pytest>=8.4.2",
            "pytest-asyncio>=1.2.0",
        ],
    },
    python_requires=">=3.11",
    entry_points={
        'console_scripts': [
            'retcon=client.retcon_cli:main',
        ],
    },
)
