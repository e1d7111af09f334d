#!/usr/bin/env python3
"""Setup script for psguard CLI"""

from setuptools import setup, find_packages
from pathlib import Path

# Read README
readme_path = Path(__file__).parent / "README.md"
long_description = readme_path.read_text() if readme_path.exists() else ""

setup(
    name="psguard",
    version="0.1.0",
    description="Safety gate and sandboxed execution for AI-generated PowerShell commands",
    long_description=long_description,
    long_description_content_type="text/markdown",
    author="psguard Team",
    author_email="psguard@example.com",
    url="https://github.com/psguard/psguard",

    # Package configuration
    packages=find_packages(where="src"),
    package_dir={"": ".", "psguard": "src/psguard"},
    py_modules=["interactive_assistant"],

    # Dependencies
    install_requires=[
        "rich>=13.0.0",
        "google-genai>=1.55.0",
        "psutil>=5.9.0",
    ],

    # Optional dependencies
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "black>=22.0.0",
            "flake8>=4.0.0",
        ],
    },

    # CLI scripts
    entry_points={
        "console_scripts": [
            "psguard=interactive_assistant:main",
        ],
    },

    # Metadata
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: System Administrators",
        "Topic :: System :: Systems Administration",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
    ],

    python_requires=">=3.8",

    include_package_data=True,
    zip_safe=False,
)
