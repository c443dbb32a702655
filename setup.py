"""
Setup script for PhonePe Payments.
"""

import os

from setuptools import find_packages, setup


# Read the README file
def read_readme():
    with open("README.md", "r", encoding="utf-8") as fh:
        return fh.read()


# Read requirements
def read_requirements():
    req_path = os.path.join(os.path.dirname(__file__), "requirements.txt")
    with open(req_path) as f:
        return [line.strip() for line in f.read().splitlines() if line.strip() and not line.startswith("#")]


setup(
    name="phonepe-payments",
    version="0.1.0",
    description="PhonePe payment gateway client with OAuth2 token management and idempotent webhook processing",
    long_description=read_readme(),
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Software Development :: Libraries :: Python Modules",
        "Topic :: Office/Business :: Financial",
        "Topic :: Internet :: WWW/HTTP :: Dynamic Content",
    ],
    python_requires=">=3.10",
    install_requires=read_requirements(),
    extras_require={
        "dev": [
            "pytest>=8.4.0",
            "pytest-cov>=4.1.0",
            "pytest-mock>=3.10.0",
            "flask>=2.0.0",
            "black>=25.1.0",
            "flake8>=7.0.0",
            "isort>=6.0.0",
            "mypy>=1.10.0",
        ],
        "web": [
            "flask>=2.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "phonepe-payments=cli.main:main",
        ],
    },
    include_package_data=True,
    package_data={
        "phonepe_payments": ["py.typed"],
    },
    keywords=[
        "phonepe",
        "payments",
        "payment-gateway",
        "oauth2",
        "webhooks",
        "refunds",
        "upi",
    ],
)
