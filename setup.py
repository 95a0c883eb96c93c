"""
Setup script for the Exif AI package.
"""

import re
from pathlib import Path
from setuptools import setup, find_packages

HERE = Path(__file__).parent

version = re.search(
    r'^__version__ = "([^"]+)"', (HERE / "exif_ai" / "__init__.py").read_text(encoding="utf-8"), re.MULTILINE
).group(1)

requirements = [
    line.strip()
    for line in (HERE / "requirements.txt").read_text().splitlines()
    if line.strip() and not line.startswith("#")
]

setup(
    name="exif-ai",
    version=version,
    description="AI-generated image descriptions and tags written into image metadata",
    long_description=(HERE / "README.md").read_text(encoding="utf-8"),
    long_description_content_type="text/markdown",
    author="Exif AI Team",
    packages=find_packages(exclude=["tests", "tests.*"]),
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: Console",
        "Framework :: AsyncIO",
        "License :: OSI Approved :: GNU General Public License v2 (GPLv2)",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Multimedia :: Graphics",
    ],
    python_requires=">=3.11",
    install_requires=requirements,
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "black>=23.0.0",
            "isort>=5.12.0",
            "flake8>=6.0.0",
            "mypy>=1.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "exif-ai=exif_ai.main:main",
        ],
    },
    keywords="exif, xmp, iptc, exiftool, image-captioning, ollama",
)
