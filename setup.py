"""
This file is used to install the package using pip.
"""

from setuptools import setup, find_packages

setup(
    name="chunkvis",
    version="0.1.0",
    description="A chunked, multi-device interferometer visibility simulator",
    license="MIT",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=["numpy", "numba", "psutil", "astropy", "pyerfa"],
    extras_require={
        "gpu": ["cupy"],
        "dev": [
            "pytest",
            "pre-commit",
            "pytest-cov",
        ],
    },
    python_requires=">=3.9",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Intended Audience :: Science/Research",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Scientific/Engineering",
        "Topic :: Scientific/Engineering :: Astronomy",
        "Topic :: Scientific/Engineering :: Physics",
    ],
)
