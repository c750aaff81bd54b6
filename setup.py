"""Setup script for the Happenings occurrence engine."""

import os
from pathlib import Path

from setuptools import find_packages, setup
from setuptools.command.develop import develop
from setuptools.command.install import install


def post_install_setup():
    """Post-installation setup to create the data directory and show setup guidance."""
    try:
        data_dir = Path.home() / ".local" / "share" / "happenings-engine"
        data_dir.mkdir(parents=True, exist_ok=True)
        if hasattr(os, "chmod"):
            os.chmod(data_dir, 0o755)

        data_file = data_dir / "happenings.json"
        if not data_file.exists():
            print("\n" + "=" * 60)
            print("Happenings Engine Installation Complete!")
            print("=" * 60)
            print(f"Data directory: {data_dir}")
            print("\nNext Steps:")
            print(f"1. Set HAPPENINGS_DATA_PATH={data_file} (or pass --data)")
            print("2. Set HAPPENINGS_SITE_TIMEZONE if the site is not in America/Denver")
            print("3. Run 'happenings-engine --help' to see all available options")
            print("=" * 60)

    except OSError as e:
        print(f"Warning: Post-install setup failed: {e}")
        print("You may need to create the data directory manually.")


class PostInstallCommand(install):
    """Custom install command with post-install setup."""

    def run(self):
        install.run(self)
        post_install_setup()


class PostDevelopCommand(develop):
    """Custom develop command with post-install setup."""

    def run(self):
        develop.run(self)
        post_install_setup()


# Read the README file
readme_file = Path(__file__).parent / "README.md"
long_description = readme_file.read_text(encoding="utf-8") if readme_file.exists() else ""

# Read requirements, splitting test tooling into the dev extra
requirements_file = Path(__file__).parent / "requirements.txt"
requirements = []
dev_requirements = []

if requirements_file.exists():
    content = requirements_file.read_text().strip()
    lines = content.split("\n")

    for line in lines:
        line = line.strip()
        # Skip empty lines and comments
        if not line or line.startswith("#"):
            continue

        # Separate development dependencies
        if "pytest" in line or "development" in line.lower() or "testing" in line.lower():
            dev_requirements.append(line)
        else:
            requirements.append(line)

setup(
    name="happenings-engine",
    version="0.1.0",
    description="Recurrence expansion and override resolution engine for community event listings",
    long_description=long_description,
    long_description_content_type="text/markdown",
    author="Happenings Team",
    # Package configuration
    packages=find_packages(exclude=["tests*", "docs*"]),
    include_package_data=True,
    # Dependencies
    install_requires=requirements,
    extras_require={
        "dev": dev_requirements
        + [
            "black>=23.0.0",
            "isort>=5.12.0",
            "mypy>=1.0.0",
        ],
    },
    python_requires=">=3.10",
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: Web Environment",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Operating System :: POSIX :: Linux",
        "Operating System :: MacOS",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Office/Business :: Scheduling",
        "Framework :: AsyncIO",
    ],
    keywords="calendar recurrence rrule events ics aiohttp",
    entry_points={
        "console_scripts": [
            "happenings-engine=happenings_engine.__main__:main",
        ],
    },
    cmdclass={
        "install": PostInstallCommand,
        "develop": PostDevelopCommand,
    },
    zip_safe=False,
    platforms=["linux", "macos"],
)
