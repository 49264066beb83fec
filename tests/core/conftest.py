# tests/core/conftest.py
import os
import shutil
import subprocess
import tempfile

import pytest


def git(repo_dir, *args) -> str:
    result = subprocess.run(
        ["git", *args],
        cwd=repo_dir,
        check=True,
        capture_output=True,
        text=True,
    )
    return result.stdout.strip()


def commit_file(repo_dir, path, content, message) -> str:
    full_path = os.path.join(repo_dir, path)
    os.makedirs(os.path.dirname(full_path), exist_ok=True)
    with open(full_path, 'w') as f:
        f.write(content)
    git(repo_dir, 'add', path)
    git(repo_dir, 'commit', '-qm', message)
    return git(repo_dir, 'rev-parse', 'HEAD')


@pytest.fixture
def temp_git_repo():
    """
    Create a temporary git repository with a small history on 'main'.

    Creates:
    - Initial commit with README.md
    - Second commit adding settings.py
    - Branch 'feature' with one more commit adding deploy/env.sh

    Yields:
        dict: repository path and the commit/blob ids of interest
    """
    temp_dir = tempfile.mkdtemp()

    try:
        git(temp_dir, 'init', '-q', '-b', 'main')
        git(temp_dir, 'config', 'user.name', 'Test User')
        git(temp_dir, 'config', 'user.email', 'test@example.com')

        initial = commit_file(temp_dir, 'README.md', '# widgets\n', 'Initial commit')
        second = commit_file(temp_dir, 'settings.py', 'DEBUG = False\n', 'Add settings')

        git(temp_dir, 'checkout', '-qb', 'feature')
        feature = commit_file(temp_dir, 'deploy/env.sh', 'export TOKEN=placeholder\n', 'Add deploy script')
        git(temp_dir, 'checkout', '-q', 'main')

        yield {
            'path': temp_dir,
            'initial': initial,
            'second': second,
            'feature': feature,
            'readme_blob': git(temp_dir, 'rev-parse', f'{initial}:README.md'),
            'settings_blob': git(temp_dir, 'rev-parse', f'{second}:settings.py'),
            'env_blob': git(temp_dir, 'rev-parse', f'{feature}:deploy/env.sh'),
            'tree': git(temp_dir, 'rev-parse', f'{second}^{{tree}}'),
        }

    finally:
        shutil.rmtree(temp_dir)


@pytest.fixture
def empty_git_repo():
    temp_dir = tempfile.mkdtemp()
    try:
        git(temp_dir, 'init', '-q', '-b', 'main')
        yield temp_dir
    finally:
        shutil.rmtree(temp_dir)
