from setuptools import setup, find_packages


setup(
    name="tarlz4",
    version="0.1",
    packages=find_packages(include=["tarlz4", "tarlz4.*"]),
    description="Pack a directory tree into a checksummed tar stream of LZ4 blocks, and restore it safely.",
    author="vercingetorx",
    python_requires=">=3.8",
    install_requires=[
        "lz4>=4.0.0",
        "xxhash>=3.0.0",
        "pycryptodomex>=3.23.0",
    ],
    entry_points={
        "console_scripts": [
            "tarlz4=tarlz4.cli:main",
        ]
    },
)
