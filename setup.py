#!/usr/bin/env python3
"""
Setup script for gpukmeans package.

GPU k-means centroid update with a single-pass decoupled look-back scan.
"""

from setuptools import setup, find_packages
import re

# Read the long description from README.md
with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

# Read version from the package
with open("src/gpukmeans/__init__.py", "r", encoding="utf-8") as f:
    content = f.read()
    version_match = re.search(r'__version__\s*=\s*["\']([^"\']+)["\']', content)
    version = version_match.group(1) if version_match else "0.1.0"

setup(
    name="gpukmeans",
    version=version,
    description="GPU k-means centroid update via single-pass decoupled look-back",
    long_description=long_description,
    long_description_content_type="text/markdown",
    author="gpukmeans contributors",
    author_email="",
    url="",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Science/Research",
        "Topic :: Scientific/Engineering :: Image Processing",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Operating System :: POSIX :: Linux",
    ],
    python_requires=">=3.10",
    install_requires=[
        "numpy>=1.26",
        "torch>=2.2",
        "triton>=3.0",
        "pyyaml>=6.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.4",
        ],
    },
    keywords=[
        "k-means", "clustering", "gpu", "triton", "prefix-sum",
        "decoupled-look-back", "color-quantization", "python"
    ],
)
