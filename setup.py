"""
kubemigrate - setup

Copyright (c) 2024 Aiven Ltd
See LICENSE for details
"""
import setuptools


def _run():
    try:
        import version_setter  # pylint: disable=import-outside-toplevel

        version_for_setup_py = version_setter.update_project_version_from_git("kubemigrate/version.py")
    except (ImportError, ValueError):
        version_for_setup_py = "0.0.1"  # tox, or no git checkout

    setuptools.setup(
        name="kubemigrate",
        version=version_for_setup_py,
        packages=setuptools.find_packages(exclude=["tests", "tests.*"]),
        python_requires=">=3.11",
        install_requires=[
            "httpx",
            "kubernetes",
            "msgspec",
            "pydantic>=2",
            "PyYAML",
            "sentry-sdk",
            "tabulate",
        ],
        extras_require={
            "test": [
                "freezegun",
                "pytest",
                "pytest-mock",
                "respx",
            ],
        },
        dependency_links=[],
        package_data={},
        entry_points={
            "console_scripts": [
                "kubemigrate = kubemigrate.main:main",
            ],
        },
        author="Aiven",
        author_email="support@aiven.io",
        license="Apache 2.0",
        platforms=["POSIX"],
        description="Migrate running Cassandra and DSE nodes to cass-operator managed pods",
        classifiers=[
            "Development Status :: 3 - Alpha",
            "Intended Audience :: Information Technology",
            "Intended Audience :: System Administrators",
            "License :: OSI Approved :: Apache Software License",
            "Programming Language :: Python :: 3.11",
            "Programming Language :: Python :: 3.12",
            "Topic :: Database :: Database Engines/Servers",
            "Topic :: System :: Clustering",
        ],
    )


if __name__ == "__main__":
    _run()
