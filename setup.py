from setuptools import setup, find_packages

setup(
    name="codememory",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.11",
    install_requires=[
        "pyyaml",
        "numpy>=1.24",
        "tqdm>=4.60",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
        ],
    },
    author="Uday Kanth",
    description="Local semantic memory for source-code chunks.",
)
