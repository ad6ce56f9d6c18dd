from setuptools import setup

def get_version():
    v = "0.0.0"
    with open('treetrait/__init__.py') as ifile:
        for line in ifile:
            if line[:7]=='version':
                v = line.split('=')[-1].strip()[1:-1]
                break
    return v

with open("README.md", "r") as fh:
    long_description = fh.read()

setup(
        name = "phylo-treetrait",
        version = get_version(),
        description = ("Maximum-likelihood ancestral state reconstruction of continuous and discrete traits"),
        long_description = long_description,
        long_description_content_type="text/markdown",
        license = "MIT",
        keywords = "phylogenetics, ancestral state reconstruction, Brownian motion, Mk model",
        packages=['treetrait'],
        python_requires='>=3.8',
        install_requires = [
            'biopython>=1.66',
            'numpy>=1.17',
            'pandas>=0.17.1',
            'scipy>=1.0',
            'matplotlib>=3.5'
        ],
        extras_require = {
            'test':['pytest'],
        },
        classifiers=[
            "Development Status :: 3 - Alpha",
            "Topic :: Scientific/Engineering :: Bio-Informatics",
            "License :: OSI Approved :: MIT License",
            "Programming Language :: Python :: 3"
            ]
    )
