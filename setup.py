"""keyshell - Setup configuration"""

from setuptools import setup, find_packages

setup(
    name="keyshell",
    version="1.0.0",
    description="Local identity accounts with password-encrypted keys and blockchain-synced sessions",
    author="keyshell Team",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    install_requires=[
        "aiofiles>=23.2.1",
        "python-dotenv>=1.0.1",
        "web3>=6.18.0",
        "eth-account>=0.13.0",
        "pydantic>=2.6.1",
        "pydantic-settings>=2.1.0",
        "structlog>=24.1.0",
        "cryptography>=42.0.2",
        "click>=8.1.7",
        "tabulate>=0.9.0",
    ],
    extras_require={
        "test": [
            "pytest>=8.0.0",
            "pytest-asyncio>=0.23.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "keyshell=keyshell.cli.main:cli",
        ],
    },
    python_requires=">=3.11",
)
