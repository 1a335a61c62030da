from setuptools import setup, find_packages

setup(
    name="corridor-replanner",
    version="1.0.0",
    packages=find_packages(include=["corridor_replanner", "corridor_replanner.*"]),
    install_requires=[
        "numpy>=1.21.0",
        "scipy>=1.7.0",
        "PyYAML>=6.0",
        "matplotlib>=3.5.0",
    ],
    extras_require={
        "test": ["pytest>=7.0"],
    },
    author="corridor-replanner Team",
    description="Receding-horizon safe flight corridor replanning core",
    python_requires=">=3.8",
)
