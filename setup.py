from setuptools import setup, find_packages
from pathlib import Path
import sys

# Check Python version requirement
if sys.version_info < (3, 9):
    raise RuntimeError("FtpCore requires Python 3.9 or newer")

setup(
    name="FtpCore",
    version="1.0.0",
    author="Andrew Hernandez",
    author_email="andromedeyz@hotmail.com",
    description="A small blocking FTP client core: control-connection state machine, reply codec and passive-mode transfers.",
    long_description=(
        open("README.md", "r", encoding="utf-8").read()
        if Path("README.md").exists()
        else "FtpCore is the part of an FTP client that usually hides inside a library: the control-connection state machine, reply parsing and passive-mode data transfers. Connect, log in, get and put files, and get a plain result back from every call."
    ),
    long_description_content_type="text/markdown",
    url="http://github.com/ApaxPhoenix/FtpCore",
    project_urls={
        "Bug Tracker": "http://github.com/ApaxPhoenix/FtpCore/issues",
        "Source Code": "http://github.com/ApaxPhoenix/FtpCore",
    },
    packages=find_packages(exclude=["tests", "tests.*"]),
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Internet :: File Transfer Protocol (FTP)",
        "Topic :: Software Development :: Libraries :: Python Modules",
        "Topic :: System :: Networking",
    ],
    python_requires=">=3.9",
    install_requires=[
        "aioftp>=0.21.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
        ],
    },
    keywords="ftp, client, passive, file transfer, networking",
    license="MIT",
    zip_safe=False,
)
