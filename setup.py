from setuptools import setup, find_packages

setup(
    name="launch-sniper",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "aiohttp>=3.9.0",
        "requests>=2.31.0",
        "python-dotenv>=1.0.0",
        "click>=8.1.0",
        "rich>=13.0.0",
        "pynacl>=1.5.0",
        "bech32>=1.2.0",
        "base58>=2.1.0",
    ],
    extras_require={
        "test": ["pytest>=7.0.0"],
    },
    entry_points={
        "console_scripts": [
            "launch-sniper=launch_sniper.cli:main",
        ],
    },
    python_requires=">=3.10",
)
