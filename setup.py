"""Build DroneRelay package."""
import setuptools

with open("README.md") as f:
    long_desc = f.read()

setuptools.setup(
    name="dronerelay",
    version="0.1.0",
    description="Rendezvous and relay server pairing drones with receivers",
    long_description=long_desc,
    long_description_content_type="text/markdown",
    packages=setuptools.find_packages(exclude=["tests", "tests.*"]),
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: Apache Software License",
        "Operating System :: OS Independent",
    ],
    python_requires=">=3.10",
    install_requires=[
        "click",
        "pydantic>=2",
        "tomli ; python_version<'3.11'",
        "typing-extensions>=4.3.0 ; python_version<'3.11'",
        "websockets>=13.0",
    ],
    extras_require={
        "dev": [
            "cryptography",
            "pytest",
            "pytest-asyncio>=0.23.2",
            "pytest-timeout",
            "requests",
        ],
    },
    entry_points={
        "console_scripts": [
            "dronerelay-server=dronerelay.relay.run:cli",
        ],
    },
)
