"""
A Python library and service indexing EigenPod deployments and beacon chain deposits
"""

from setuptools import find_packages, setup

with open("README.md", encoding="utf-8") as f:
    long_description = f.read()

with open("requirements.txt", encoding="utf-8") as f:
    requirements = f.read().splitlines()

setup(
    name="eigenindexer",
    version="0.0.1",
    description="Index EigenPod deployments and beacon chain deposits into SQL",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["eigenindexer.tests"]),
    package_data={
        "": ["../requirements.txt"],
    },
    install_requires=requirements,
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "eigenindexer=eigenindexer.cli:main",
        ],
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "Operating System :: OS Independent",
    ],
    python_requires=">=3.10",
)
