"""
version

Copyright (c) 2024 Aiven Ltd
See LICENSE for details
"""
import importlib.util
import os
import subprocess

KUBEMIGRATE_VERSION_FILE = os.path.join(os.path.dirname(__file__), "kubemigrate", "version.py")


def save_version(*, new_ver, old_ver, version_file):
    "Save new version file, if old_ver != new_ver"
    if not new_ver:
        return False
    if not old_ver or new_ver != old_ver:
        with open(version_file, "w") as file_handle:
            file_handle.write(f'"""{__doc__}"""\n__version__ = "{new_ver}"\n')
    return True


def read_file_version(version_file_full_path):
    if not os.path.exists(version_file_full_path):
        return None
    module_spec = importlib.util.spec_from_file_location("verfile", version_file_full_path)
    module = importlib.util.module_from_spec(module_spec)
    module_spec.loader.exec_module(module)
    return getattr(module, "__version__", None)


def version_from_git_describe(git_ver):
    """Turn `git describe --always` output into a PEP 440 version.

    v1.2.0 -> 1.2.0, v1.2.0-3-gabc123 -> 1.2.0.dev3+gabc123, abc123 -> 0.0.1.dev0+unknownabc123
    """
    git_ver = git_ver.lstrip("v")
    if "." not in git_ver:
        git_ver = f"0.0.1-0-unknown{git_ver}"
    if "-" not in git_ver:
        return git_ver
    # Development versions sort before the release they are based on
    version, count_since_release, git_hash = git_ver.rsplit("-", 2)
    return f"{version}.dev{count_since_release}+{git_hash}"


def update_project_version_from_git(version_file):
    "Update the version_file, and return the version number stored in the file"
    project_root_directory = os.path.dirname(os.path.realpath(__file__))
    version_file_full_path = os.path.join(project_root_directory, version_file)
    file_ver = read_file_version(version_file_full_path)

    try:
        git_out = subprocess.check_output(
            ["git", "--git-dir", os.path.join(project_root_directory, ".git"), "describe", "--always", "--tags"],
            stderr=subprocess.DEVNULL,
        )
    except (OSError, subprocess.CalledProcessError):
        pass
    else:
        new_version = version_from_git_describe(git_out.splitlines()[0].strip().decode("utf-8"))
        if save_version(new_ver=new_version, old_ver=file_ver, version_file=version_file_full_path):
            return new_version

    if not file_ver:
        raise ValueError(f"version not available from git or from file {version_file!r}")

    return file_ver


if __name__ == "__main__":
    import sys

    if sys.argv[1] == "from-git":
        update_project_version_from_git(KUBEMIGRATE_VERSION_FILE)
    elif sys.argv[1] == "set-version":
        save_version(new_ver=sys.argv[2], old_ver=None, version_file=KUBEMIGRATE_VERSION_FILE)
    else:
        raise ValueError(f"Unknown command {sys.argv[1]!r}")
