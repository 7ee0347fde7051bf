#!/usr/bin/env python3
"""
Setup configuration for the Networth backend package
"""

from setuptools import setup, find_packages

setup(
    name="networth-backend",
    version="1.0.0",
    description="Networth Backend - multi-currency portfolio valuation, snapshots and share links",
    packages=find_packages(exclude=["tests", "tests.*"]),
    py_modules=["api_server"],
    python_requires=">=3.9",
    install_requires=[
        "fastapi>=0.110.0,<0.137",
        "uvicorn>=0.27.0",
        "httpx>=0.27.0",
        "pydantic>=2.5.0",
        "supabase>=2.3.0",
        "python-dotenv>=1.0.0",
        "python-decouple>=3.8",
        "PyJWT>=2.8.0",
        "redis>=5.0.0",
        "pytz>=2024.1",
    ],
    extras_require={
        "test": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "pytest-mock>=3.10.0",
        ],
    },
)
