from setuptools import setup, find_packages

setup(
    name="plexbooks_core",
    version="0.1.0",
    packages=find_packages(exclude=["*_test"]),
    install_requires=[
        "requests>=2.31.0",
        "python-dotenv>=1.0.0",
        "PySide6>=6.6.0",
    ],
    extras_require={
        "test": ["pytest>=7.4.0"],
    },
    python_requires=">=3.10",
)
