"""Tests for assembling build environment invocations"""

import pytest
from pathlib import Path
from unittest.mock import Mock
from xgopy import (
    BuildFlags,
    ConfigFlags,
    ExecutionMode,
    InvocationAssembler,
    LocationResolver,
    MountEntry,
    ProjectLocation,
    logging,
)

CONTAINERIZED = ExecutionMode.CONTAINERIZED
CONTAINED = ExecutionMode.CONTAINED


def make_assembler(config, flags=None):
    assembler = InvocationAssembler(config, flags or BuildFlags())
    assembler.log = Mock(spec=logging.Logger)
    assembler.planner.log = Mock(spec=logging.Logger)
    return assembler


def resolve(config):
    resolver = LocationResolver(config.workspace_roots)
    resolver.log = Mock(spec=logging.Logger)
    return resolver.resolve(config.project_ref)


@pytest.fixture
def module_project(tmp_path):
    project = tmp_path / "proj"
    project.mkdir()
    (project / "go.mod").write_text("module example.com/proj\n")
    return project


@pytest.fixture
def legacy_project(gopath):
    project = gopath[0] / "src" / "example.com" / "proj"
    project.mkdir(parents=True)
    return project


class TestManifestMode:
    def test_targets_and_mounts(self, module_project, tmp_path):
        config = ConfigFlags(
            targets=("linux/amd64", "darwin/arm64"),
            project_path=str(module_project),
            deps_cache=tmp_path / "cache",
        )
        spec = make_assembler(config).assemble(resolve(config), CONTAINERIZED)

        assert spec.env["TARGETS"] == "linux/amd64 darwin/arm64"
        assert spec.mounts == (
            MountEntry(str(tmp_path / "cache"), "/deps-cache", 0, True),
            MountEntry(str(module_project), "/source", 0, False),
        )
        assert spec.env["GO111MODULE"] == "on"
        assert "EXT_GOPATH" not in spec.env
        assert spec.output_dir == str(module_project / "bin")
        assert spec.workdir == str(module_project)
        assert not spec.containerless

    def test_wildcard_targets(self, module_project):
        config = ConfigFlags(targets=("*/*",), project_path=str(module_project))
        spec = make_assembler(config).assemble(resolve(config), CONTAINERIZED)
        assert spec.env["TARGETS"] == ". ."

    def test_mixed_wildcard_targets(self, module_project):
        """Only all-wildcard targets are split into one dot per segment"""
        config = ConfigFlags(
            targets=("*/*", "linux/amd64"), project_path=str(module_project)
        )
        spec = make_assembler(config).assemble(resolve(config), CONTAINED)
        assert spec.env["TARGETS"] == ". . linux/amd64"

    def test_partial_wildcards(self, module_project):
        config = ConfigFlags(
            targets=("linux/*", "windows/amd64"), project_path=str(module_project)
        )
        spec = make_assembler(config).assemble(resolve(config), CONTAINERIZED)
        assert spec.env["TARGETS"] == "linux/. windows/amd64"

    def test_vendor_directory(self, module_project):
        (module_project / "vendor").mkdir()
        config = ConfigFlags(project_path=str(module_project))
        spec = make_assembler(config).assemble(resolve(config), CONTAINERIZED)
        assert spec.env["FLAG_MOD"] == "vendor"

    def test_no_vendor_directory(self, module_project):
        config = ConfigFlags(project_path=str(module_project))
        spec = make_assembler(config).assemble(resolve(config), CONTAINERIZED)
        assert "FLAG_MOD" not in spec.env

    def test_go_proxy(self, module_project):
        config = ConfigFlags(
            project_path=str(module_project), go_proxy="https://proxy.golang.org"
        )
        spec = make_assembler(config).assemble(resolve(config), CONTAINERIZED)
        assert spec.env["GOPROXY"] == "https://proxy.golang.org"

    def test_mod_cache_mount(self, module_project, tmp_path):
        config = ConfigFlags(
            project_path=str(module_project), mod_cache=str(tmp_path / "gocache")
        )
        spec = make_assembler(config).assemble(resolve(config), CONTAINERIZED)
        assert spec.mounts[-1] == MountEntry(str(tmp_path / "gocache"), "/go")

    def test_cmd_and_bin_path(self, module_project):
        config = ConfigFlags(
            project_path=str(module_project), cmd_path="cmd/app", bin_path="dist"
        )
        spec = make_assembler(config).assemble(resolve(config), CONTAINERIZED)
        assert spec.workdir == str(module_project / "cmd" / "app")
        assert spec.output_dir == str(module_project / "dist")


class TestLegacyMode:
    def test_legacy_mounts(self, gopath, legacy_project, tmp_path):
        config = ConfigFlags(
            project_path=str(legacy_project),
            workspace_roots=tuple(str(r) for r in gopath),
            deps_cache=tmp_path / "cache",
        )
        spec = make_assembler(config).assemble(resolve(config), CONTAINERIZED)

        assert [m.container_path for m in spec.mounts] == [
            "/deps-cache",
            "/ext-go/1/src",
            "/ext-go/2/src",
        ]
        assert spec.env["EXT_GOPATH"] == "/ext-go/1:/ext-go/2"
        assert spec.env["GO111MODULE"] == "off"
        assert "GOPROXY" not in spec.env

    def test_no_vendor_toggle(self, gopath, legacy_project):
        (legacy_project / "vendor").mkdir()
        config = ConfigFlags(
            project_path=str(legacy_project),
            workspace_roots=tuple(str(r) for r in gopath),
            go_proxy="https://proxy.golang.org",
        )
        spec = make_assembler(config).assemble(resolve(config), CONTAINERIZED)
        assert "FLAG_MOD" not in spec.env
        assert "GOPROXY" not in spec.env


class TestRemote:
    def test_remote_project(self):
        config = ConfigFlags(
            remote="https://github.com/user/repo", branch="main", cmd_path="cmd/app"
        )
        location = resolve(config)
        spec = make_assembler(config).assemble(location, CONTAINERIZED)

        assert spec.env["REPO_REMOTE"] == "https://github.com/user/repo"
        assert spec.env["REPO_BRANCH"] == "main"
        assert spec.workdir == "cmd/app"
        assert [m.container_path for m in spec.mounts] == ["/deps-cache"]

    def test_local_project_clears_remote(self, module_project):
        config = ConfigFlags(
            remote="https://github.com/user/repo", project_path=str(module_project)
        )
        spec = make_assembler(config).assemble(resolve(config), CONTAINERIZED)
        assert spec.env["REPO_REMOTE"] == ""
        assert spec.env["REPO_BRANCH"] == ""


class TestEnvironment:
    def test_build_flags(self, module_project):
        config = ConfigFlags(
            project_path=str(module_project),
            package="cmd/tool",
            prefix="tool",
            dependencies="https://x.org/a.tar.gz",
            arguments="--disable-shared",
        )
        flags = BuildFlags(
            verbose=True,
            steps=False,
            race=True,
            tags="netgo osusergo",
            ldflags="-s -w",
            mode="pie",
            vcs="git",
            trimpath=True,
        )
        env = make_assembler(config, flags).assemble(resolve(config), CONTAINERIZED).env

        assert env["PACK"] == "cmd/tool"
        assert env["OUT"] == "tool"
        assert env["DEPS"] == "https://x.org/a.tar.gz"
        assert env["ARGS"] == "--disable-shared"
        assert env["FLAG_V"] == "true"
        assert env["FLAG_X"] == "false"
        assert env["FLAG_RACE"] == "true"
        assert env["FLAG_TAGS"] == "netgo osusergo"
        assert env["FLAG_LDFLAGS"] == "-s -w"
        assert env["FLAG_BUILDMODE"] == "pie"
        assert env["FLAG_BUILDVCS"] == "git"
        assert env["FLAG_TRIMPATH"] == "true"

    def test_modes_share_contract(self, gopath, legacy_project):
        """Contained and containerized env differ only in EXT_GOPATH"""
        config = ConfigFlags(
            project_path=str(legacy_project),
            workspace_roots=tuple(str(r) for r in gopath),
        )
        assembler = make_assembler(config)
        location = resolve(config)
        outer = assembler.assemble(location, CONTAINERIZED).env
        inner = assembler.assemble(location, CONTAINED).env

        assert outer.pop("EXT_GOPATH") == "/ext-go/1:/ext-go/2"
        assert inner.pop("EXT_GOPATH") == "/non-existent-path-to-signal-local-build"
        assert outer == inner


class TestContainedMode:
    def test_no_mounts(self, module_project):
        config = ConfigFlags(project_path=str(module_project), in_xgo=True)
        spec = make_assembler(config).assemble(resolve(config), CONTAINED)

        assert spec.containerless
        assert spec.mounts == ()
        assert spec.output_dir == ""
        assert spec.env["EXT_GOPATH"] == "/non-existent-path-to-signal-local-build"
        assert spec.command() == ["xgo-build", str(module_project)]

    def test_vendor_detected(self, module_project):
        (module_project / "vendor").mkdir()
        config = ConfigFlags(project_path=str(module_project), in_xgo=True)
        spec = make_assembler(config).assemble(resolve(config), CONTAINED)
        assert spec.env["FLAG_MOD"] == "vendor"

    def test_remote_has_no_sentinel(self):
        config = ConfigFlags(remote="github.com/user/repo", in_xgo=True)
        spec = make_assembler(config).assemble(resolve(config), CONTAINED)
        assert "EXT_GOPATH" not in spec.env


class TestCommand:
    def test_docker_command(self, module_project, tmp_path):
        config = ConfigFlags(
            project_path=str(module_project),
            targets=("linux/amd64",),
            deps_cache=tmp_path / "cache",
            docker_image="my/xgo:1.21",
        )
        spec = make_assembler(config).assemble(resolve(config), CONTAINERIZED)
        args = spec.command()

        assert args[:3] == ["docker", "run", "--rm"]
        assert args[3:9] == [
            "-v", f"{module_project / 'bin'}:/build",
            "-v", f"{tmp_path / 'cache'}:/deps-cache:ro",
            "-v", f"{module_project}:/source",
        ]
        assert "-e" in args and "TARGETS=linux/amd64" in args
        assert args[-2:] == ["my/xgo:1.21", str(module_project)]

    def test_command_is_reproducible(self, gopath, legacy_project, outside):
        (gopath[0] / "src" / "lib").symlink_to(outside, target_is_directory=True)
        config = ConfigFlags(
            project_path=str(legacy_project),
            workspace_roots=tuple(str(r) for r in gopath),
        )
        first = make_assembler(config).assemble(resolve(config), CONTAINERIZED)
        second = make_assembler(config).assemble(resolve(config), CONTAINERIZED)
        assert first.command() == second.command()
        assert f"{outside.resolve()}:/ext-go/1/src/lib:ro" in first.command()


class TestImageSelection:
    def test_official(self):
        assert ConfigFlags(go_version="1.21").image == "ghcr.io/crazy-max/xgo:1.21"

    def test_custom_repo(self):
        config = ConfigFlags(docker_repo="me/xgo", go_version="1.20")
        assert config.image == "me/xgo:1.20"

    def test_custom_image_wins(self):
        config = ConfigFlags(docker_repo="me/xgo", docker_image="other:tag")
        assert config.image == "other:tag"
