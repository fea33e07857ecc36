import pytest


@pytest.fixture
def gopath(tmp_path):
    """Create two empty legacy workspaces and return their roots"""
    roots = []
    for name in ("gopath1", "gopath2"):
        root = tmp_path / name
        (root / "src").mkdir(parents=True)
        roots.append(root)
    return roots


@pytest.fixture
def outside(tmp_path):
    """A package directory outside of every workspace"""
    pkg = tmp_path / "elsewhere" / "lib"
    pkg.mkdir(parents=True)
    return pkg
