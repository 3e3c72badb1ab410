import os
from setuptools import setup

def get_version():
    v = "0.0.0"
    with open('clockdate/__init__.py') as ifile:
        for line in ifile:
            if line[:7]=='version':
                v = line.split('=')[-1].strip()[1:-1]
                break
    return v

with open("README.md", "r") as fh:
    long_description = fh.read()

setup(
        name = "phylo-clockdate",
        version = get_version(),
        description = ("Maximum-likelihood molecular clock dating of phylogenies"),
        long_description = long_description,
        long_description_content_type="text/markdown",
        license = "MIT",
        keywords = "Time-stamped phylogenies, molecular clock, relaxed clock, virus evolution",
        packages=['clockdate'],
        python_requires = '>=3.8',
        install_requires = [
            'biopython>=1.70',
            'numpy>=1.17',
            'pandas>=1.0',
            'scipy>=1.4',
            'statsmodels>=0.11'
        ],
        extras_require = {
            'test': ['pytest'],
        },
        classifiers=[
            "Development Status :: 3 - Alpha",
            "Topic :: Scientific/Engineering :: Bio-Informatics",
            "License :: OSI Approved :: MIT License",
            "Programming Language :: Python :: 3",
            ],
        scripts=['bin/clockdate']
    )
