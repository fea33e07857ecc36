#!/usr/bin/env python3
"""xgopy.py - cross compiles cgo projects inside an xgo build environment

features:

- Single script which prepares and launches the xgo cross compilation image
- Resolves local projects as go modules or legacy GOPATH workspaces
- Mounts symlinked GOPATH packages explicitly (docker does not follow them)
- Caches external cgo dependency archives between runs
- Can run recursively from within an xgo image (XGO_IN_XGO=1)

class structure:

BuildFlags
ConfigFlags
ProjectLocation
MountEntry
InvocationSpec

ShellCmd
    Docker
    DependencyCache
    LocationResolver
    MountPlanner
    InvocationAssembler
    Runner
    CrossCompiler

"""

import argparse
import datetime
import enum
import logging
import os
import shlex
import shutil
import subprocess
import sys
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Mapping, NoReturn, Optional, Union
from urllib.request import urlopen

__version__ = "0.1.0"

# ----------------------------------------------------------------------------
# type aliases

Pathlike = Union[str, Path]


# ----------------------------------------------------------------------------
# env helpers


def getenv(key: str, default: bool = False) -> bool:
    """convert '0','1' env values to bool {True, False}"""
    return bool(int(os.getenv(key, default)))


# ----------------------------------------------------------------------------
# constants

PY_VER_MINOR = sys.version_info.minor
DOCKER_DIST = "ghcr.io/crazy-max/xgo"
DEFAULT_GO_VERSION = "latest"
DEPS_CACHE = Path(tempfile.gettempdir()) / "xgo-cache"
CONTAINED_DEPS_CACHE = Path("/deps-cache")
MANIFEST_FILE = "go.mod"
VENDOR_DIR = "vendor"
BUILD_EXECUTABLE = "xgo-build"

# interior mount points of the xgo image
OUTPUT_MOUNT = "/build"
SOURCE_MOUNT = "/source"
MOD_CACHE_MOUNT = "/go"
EXT_ROOT = "/ext-go"
EXT_ROOT_SEPARATOR = ":"  # interior is always linux
LOCAL_BUILD_SENTINEL = "/non-existent-path-to-signal-local-build"

# ----------------------------------------------------------------------------
# envar options

DEBUG = getenv("DEBUG", default=False)
COLOR = getenv("COLOR", default=True)

# ----------------------------------------------------------------------------
# logging config


class CustomFormatter(logging.Formatter):
    """custom logging formatting class"""

    white = "\x1b[97;20m"
    grey = "\x1b[38;20m"
    green = "\x1b[32;20m"
    yellow = "\x1b[33;20m"
    red = "\x1b[31;20m"
    bold_red = "\x1b[31;1m"
    reset = "\x1b[0m"
    fmt = "%(delta)s - %(levelname)s - %(name)s.%(funcName)s - %(message)s"
    cfmt = (
        f"{white}%(delta)s{reset} - "
        f"{{}}%(levelname)s{{}} - "
        f"{white}%(name)s.%(funcName)s{reset} - "
        f"{grey}%(message)s{reset}"
    )

    FORMATS = {
        logging.DEBUG: cfmt.format(grey, reset),
        logging.INFO: cfmt.format(green, reset),
        logging.WARNING: cfmt.format(yellow, reset),
        logging.ERROR: cfmt.format(red, reset),
        logging.CRITICAL: cfmt.format(bold_red, reset),
    }

    def __init__(self, use_color: bool = COLOR) -> None:
        super().__init__()
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        """custom logger formatting method"""
        if not self.use_color:
            log_fmt: str = self.fmt
        else:
            log_fmt = self.FORMATS.get(record.levelno, self.fmt)
        if PY_VER_MINOR > 10:
            duration = datetime.datetime.fromtimestamp(
                record.relativeCreated / 1000, datetime.UTC
            )
        else:
            duration = datetime.datetime.fromtimestamp(record.relativeCreated / 1000)
        record.delta = duration.strftime("%H:%M:%S")
        formatter = logging.Formatter(log_fmt)
        return formatter.format(record)


strm_handler = logging.StreamHandler()
strm_handler.setFormatter(CustomFormatter())
logging.basicConfig(
    level=logging.DEBUG if DEBUG else logging.INFO,
    handlers=[strm_handler],
)


# ----------------------------------------------------------------------------
# custom exceptions


class BuildError(Exception):
    """Base exception for xgopy errors"""

    pass


class ConfigurationError(BuildError):
    """Exception for ill-posed invocations (paths, workspace roots, modes)"""

    pass


class CommandError(BuildError):
    """Exception for command execution errors"""

    def __init__(self, msg: str, returncode: int = 1) -> None:
        super().__init__(msg)
        self.returncode = returncode


class DockerError(CommandError):
    """Exception for container engine errors"""

    pass


class DownloadError(BuildError):
    """Exception for dependency download errors"""

    pass


# ----------------------------------------------------------------------------
# dataclasses


@dataclass(frozen=True)
class BuildFlags:
    """Flags to fine tune the go build inside the image."""

    verbose: bool = False  # print the names of packages as they are compiled
    steps: bool = False  # print the commands as they are executed
    race: bool = False  # data race detection (amd64 only)
    tags: str = ""
    ldflags: str = ""
    mode: str = "default"  # default|archive|exe|pie
    vcs: str = ""  # none|git|hg|svn|bzr
    trimpath: bool = False

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> "BuildFlags":
        return cls(
            verbose=args.verbose,
            steps=args.steps,
            race=args.race,
            tags=args.tags,
            ldflags=args.build_ldflags,
            mode=args.build_mode,
            vcs=args.build_vcs,
            trimpath=args.build_trim_path,
        )


@dataclass(frozen=True)
class ConfigFlags:
    """Environment, dependencies and image selection for one run.

    Constructed once at startup by :meth:`from_args`, which is the only place
    the process environment is consulted. Every component receives it (or the
    fields it needs) explicitly.
    """

    package: str = ""  # sub-package to build if not root import
    prefix: str = ""  # prefix for output naming
    remote: str = ""  # version control remote repository to build
    branch: str = ""  # version control branch to build
    dependencies: str = ""  # space separated cgo dependency archive urls
    arguments: str = ""  # cgo dependency configure arguments
    targets: tuple[str, ...] = ("*/*",)
    project_path: str = ""
    cmd_path: str = "."
    bin_path: str = "bin"
    go_version: str = DEFAULT_GO_VERSION
    go_proxy: str = ""
    docker_repo: str = ""
    docker_image: str = ""
    mod_cache: str = ""
    workspace_roots: tuple[str, ...] = ()
    in_xgo: bool = False
    deps_cache: Path = DEPS_CACHE

    @classmethod
    def from_args(
        cls, args: argparse.Namespace, environ: Mapping[str, str]
    ) -> "ConfigFlags":
        """build configuration from parsed arguments and an environment"""
        log = logging.getLogger(cls.__name__)
        in_xgo = environ.get("XGO_IN_XGO", "") == "1"

        gopath = environ.get("GOPATH", "")
        if not gopath:
            gopath = str(Path.home() / "go")
            log.info("No $GOPATH is set - defaulting to %s", gopath)
        roots = tuple(p for p in gopath.split(os.pathsep) if p)

        return cls(
            package=args.pkg,
            prefix=args.command_prefix,
            remote=args.remote,
            branch=args.branch,
            dependencies=args.deps,
            arguments=args.depsargs,
            targets=tuple(t.strip() for t in args.targets.split(",") if t.strip()),
            project_path=args.project_path,
            cmd_path=args.cmd_path,
            bin_path=args.bin_path,
            go_version=args.go_version,
            go_proxy=args.go_proxy,
            docker_repo=args.docker_repo,
            docker_image=args.docker_image,
            mod_cache=args.mod_cache,
            workspace_roots=roots,
            in_xgo=in_xgo,
            deps_cache=CONTAINED_DEPS_CACHE if in_xgo else DEPS_CACHE,
        )

    @property
    def image(self) -> str:
        """docker image to run: custom image > custom repo > official dist"""
        if self.docker_image:
            return self.docker_image
        if self.docker_repo:
            return f"{self.docker_repo}:{self.go_version}"
        return f"{DOCKER_DIST}:{self.go_version}"

    @property
    def project_ref(self) -> str:
        """raw project reference: explicit path > remote repository > cwd"""
        if self.project_path:
            return self.project_path
        if self.remote:
            return self.remote
        return os.getcwd()

    @property
    def dependency_urls(self) -> list[str]:
        return [url for url in self.dependencies.split() if url]


@dataclass(frozen=True)
class ProjectLocation:
    """Canonical identity of the project being built."""

    raw_path: str
    is_local: bool
    is_module_based: bool
    resolved_identity: str
    path: Optional[Path] = None  # absolute project root (local builds only)


@dataclass(frozen=True)
class MountEntry:
    """A single bind mount into the build environment."""

    host_path: str
    container_path: str
    external_root_index: int = 0  # 0 for mounts outside /ext-go
    read_only: bool = False

    def volume(self) -> str:
        """docker -v argument"""
        spec = f"{self.host_path}:{self.container_path}"
        return f"{spec}:ro" if self.read_only else spec


@dataclass(frozen=True)
class MountPlan:
    """Ordered legacy workspace mounts and their external roots"""

    mounts: tuple[MountEntry, ...] = ()
    ext_roots: tuple[str, ...] = ()

    @property
    def joined_roots(self) -> str:
        return EXT_ROOT_SEPARATOR.join(self.ext_roots)


@dataclass(frozen=True)
class DiscoveredLink:
    """A symlinked package directory found under a workspace source tree"""

    link: Path
    target: Path
    relative: str


@dataclass(frozen=True)
class CacheEntry:
    url: str
    path: Path


class ExecutionMode(enum.Enum):
    """How the build environment is entered"""

    CONTAINERIZED = "containerized"
    CONTAINED = "contained"


@dataclass(frozen=True)
class InvocationSpec:
    """Fully specified launch of the build environment."""

    image: str
    mounts: tuple[MountEntry, ...]
    env: dict[str, str]
    targets: tuple[str, ...]
    workdir: str
    containerless: bool
    output_dir: str = ""

    def command(self) -> list[str]:
        """render the invocation as an argument vector"""
        if self.containerless:
            return [BUILD_EXECUTABLE, self.workdir]
        args = ["docker", "run", "--rm"]
        if self.output_dir:
            args.extend(["-v", f"{self.output_dir}:{OUTPUT_MOUNT}"])
        for mount in self.mounts:
            args.extend(["-v", mount.volume()])
        for key, value in self.env.items():
            args.extend(["-e", f"{key}={value}"])
        args.extend([self.image, self.workdir])
        return args


# ----------------------------------------------------------------------------
# utility classes


class ShellCmd:
    """Provides logged process and filesystem helpers."""

    log: logging.Logger

    def cmd(
        self,
        shellcmd: Union[str, list[str]],
        cwd: Pathlike = ".",
        env: Optional[Mapping[str, str]] = None,
    ) -> None:
        """Run command within working directory, forwarding stdout/stderr

        Args:
            shellcmd: Command as string (will be split safely) or list of args
            cwd: Working directory for command execution
            env: Optional complete environment for the child process

        Raises:
            CommandError: If command execution fails
        """
        args = shlex.split(shellcmd) if isinstance(shellcmd, str) else shellcmd
        self.log.info(" ".join(args))
        try:
            if env is None:
                subprocess.check_call(args, cwd=str(cwd))
            else:
                subprocess.check_call(args, cwd=str(cwd), env=dict(env))
        except subprocess.CalledProcessError as e:
            self.log.critical("Command failed: %s", e)
            raise CommandError(
                f"Command failed: {' '.join(args)}", returncode=e.returncode
            ) from e
        except FileNotFoundError as e:
            raise CommandError(f"Command not found: {args[0]}") from e

    def fail(self, msg: str, *args: str) -> NoReturn:
        """Raise ConfigurationError with formatted message

        Raises:
            ConfigurationError: Always raised with formatted message
        """
        formatted_msg = msg % args if args else msg
        self.log.critical(formatted_msg)
        raise ConfigurationError(formatted_msg)

    def makedirs(self, path: Pathlike, mode: int = 0o751, exist_ok: bool = True) -> None:
        """Recursive directory creation function"""
        self.log.debug("Making directory: %s", path)
        os.makedirs(path, mode, exist_ok)

    def remove(self, path: Pathlike) -> None:
        """Remove file if it exists."""
        path = Path(path)
        self.log.debug("Removing file: %s", path)
        try:
            path.unlink()
        except FileNotFoundError:
            self.log.debug("File not found: %s", path)


# ----------------------------------------------------------------------------
# collaborators


class Docker(ShellCmd):
    """Container engine wrapper"""

    def __init__(self, executable: str = "docker") -> None:
        self.executable = executable
        self.log = logging.getLogger(self.__class__.__name__)

    def check(self) -> None:
        """check that a docker installation can be found and is functional"""
        self.log.info("Checking docker installation...")
        try:
            self.cmd([self.executable, "version"])
        except CommandError as e:
            raise DockerError(
                f"Failed to check docker installation: {e}", returncode=e.returncode
            ) from e

    def image_exists(self, image: str) -> bool:
        """check whether a required docker image is available locally"""
        self.log.info("Checking for required docker image %s...", image)
        try:
            result = subprocess.run(
                [self.executable, "image", "inspect", image],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
        except FileNotFoundError as e:
            raise DockerError(f"Command not found: {self.executable}") from e
        return result.returncode == 0

    def pull(self, image: str) -> None:
        """pull an image from the docker registry"""
        self.log.info("Pulling %s from docker registry...", image)
        try:
            self.cmd([self.executable, "pull", image])
        except CommandError as e:
            raise DockerError(
                f"Failed to pull docker image from the registry: {image}",
                returncode=e.returncode,
            ) from e

    def ensure_image(self, image: str) -> None:
        if self.image_exists(image):
            self.log.info("Docker image found!")
        else:
            self.log.info("Docker image %s not found", image)
            self.pull(image)


class DependencyCache(ShellCmd):
    """Local store of cgo dependency archives keyed by url basename.

    A cached file is trusted as is: there is no checksum validation and no
    staleness detection. Urls sharing a basename map onto the same file.
    Concurrent runs are not serialized: two runs fetching the same uncached
    url both write the destination and the last write wins.
    """

    def __init__(self, root: Pathlike = DEPS_CACHE) -> None:
        self.root = Path(root)
        self.log = logging.getLogger(self.__class__.__name__)

    def path_for(self, url: str) -> Path:
        """cache location of url: its final path segment under root"""
        name = url.rstrip("/").rsplit("/", 1)[-1]
        return self.root / name

    def setup(self) -> None:
        try:
            self.makedirs(self.root)
        except OSError as e:
            raise DownloadError(f"Failed to create dependency cache: {e}") from e

    def ensure(self, urls: list[str]) -> list[CacheEntry]:
        """make sure every url has a local copy under the cache root"""
        self.setup()
        return [self.fetch(url) for url in urls]

    def fetch(self, url: str) -> CacheEntry:
        """download url into the cache unless already present

        Raises:
            DownloadError: If the destination cannot be written or the
                download fails
        """
        path = self.path_for(url)
        if path.exists():
            self.log.info("Dependency already cached: %s", path)
            return CacheEntry(url, path)

        self.log.info("Downloading new dependency: %s...", url)
        try:
            with open(path, "wb") as out:
                with urlopen(url) as response:
                    shutil.copyfileobj(response, out)
        except Exception as e:
            self.remove(path)
            raise DownloadError(f"Failed to download dependency {url}: {e}") from e
        self.log.info("New dependency cached: %s", path)
        return CacheEntry(url, path)


# ----------------------------------------------------------------------------
# main classes


def is_local_path(ref: str) -> bool:
    """true if ref is a filesystem path rather than a remote descriptor"""
    return ref.startswith((os.sep, ".", "/"))


class LocationResolver(ShellCmd):
    """Resolves a project reference into a ProjectLocation.

    Local references are module based when a go.mod sits at the project root.
    Otherwise the directory is mapped onto one of the workspace roots to
    derive its import path, and the go.mod check is repeated at the location
    that import path resolves to.
    """

    def __init__(self, workspace_roots: tuple[str, ...] = ()) -> None:
        self.workspace_roots = workspace_roots
        self.log = logging.getLogger(self.__class__.__name__)

    @staticmethod
    def has_manifest(path: Path) -> bool:
        return (path / MANIFEST_FILE).is_file()

    def resolve(self, ref: str) -> ProjectLocation:
        """resolve a raw project reference

        Raises:
            ConfigurationError: If the path does not exist, is not a directory
                or cannot be mapped to a workspace root
        """
        if not is_local_path(ref):
            self.log.debug("Treating %s as a remote project", ref)
            return ProjectLocation(ref, False, True, ref)

        try:
            path = Path(os.path.abspath(ref))
        except OSError as e:
            raise ConfigurationError(f"Failed to locate requested package: {e}") from e
        if not path.exists():
            self.fail("Requested path does not exist: %s", str(path))
        if not path.is_dir():
            self.fail("Requested path is not a directory: %s", str(path))

        if self.has_manifest(path):
            return ProjectLocation(ref, True, True, str(path), path)

        identity = self.import_path(path)
        for candidate in self.candidates(identity):
            if self.has_manifest(candidate):
                return ProjectLocation(ref, True, True, identity, candidate)

        self.log.info("%s not found. Skipping go modules", MANIFEST_FILE)
        return ProjectLocation(ref, True, False, identity, path)

    def import_path(self, path: Path) -> str:
        """derive the import path of a directory from the workspace roots"""
        if not self.workspace_roots:
            self.fail("No $GOPATH is set or forwarded to xgopy")
        for path_ in dict.fromkeys([path, path.resolve()]):
            for root in self.workspace_roots:
                sources = Path(os.path.abspath(root)) / "src"
                for sources_ in dict.fromkeys([sources, sources.resolve()]):
                    if path_ != sources_ and path_.is_relative_to(sources_):
                        return path_.relative_to(sources_).as_posix()
        self.fail(
            "Failed to resolve import path: %s is not within any of %s",
            str(path),
            os.pathsep.join(self.workspace_roots),
        )

    def candidates(self, identity: str) -> Iterator[Path]:
        """directories an import path resolves to, in workspace order"""
        for root in self.workspace_roots:
            candidate = Path(os.path.abspath(root)) / "src" / identity
            if candidate.is_dir():
                yield candidate


class MountPlanner(ShellCmd):
    """Computes the legacy GOPATH mounts.

    Docker sandboxes volumes, so symlinks leading out of a workspace source
    tree have to be mounted explicitly. Every external link gets its own
    external root, followed by one external root per workspace itself.
    """

    def __init__(self, workspace_roots: tuple[str, ...] = ()) -> None:
        self.workspace_roots = workspace_roots
        self.log = logging.getLogger(self.__class__.__name__)

    def walk_links(self, top: Path) -> Iterator[Path]:
        """depth-first lexical walk yielding symlinks, never following them"""
        try:
            with os.scandir(top) as it:
                entries = sorted(it, key=lambda e: e.name)
        except OSError as e:
            self.log.warning("Failed to access GOPATH element %s: %s", top, e)
            return
        for entry in entries:
            if entry.is_symlink():
                yield Path(entry.path)
            elif entry.is_dir(follow_symlinks=False):
                yield from self.walk_links(Path(entry.path))

    def discover(self, sources: Path) -> Iterator[DiscoveredLink]:
        """symlinked directories under sources pointing outside of it"""
        covered = {sources, sources.resolve()}
        for link in self.walk_links(sources):
            try:
                target = link.resolve(strict=True)
            except (OSError, RuntimeError):
                self.log.debug("Skipping dangling link: %s", link)
                continue
            if not target.is_dir():
                continue
            if any(target.is_relative_to(root) for root in covered):
                continue
            yield DiscoveredLink(link, target, link.relative_to(sources).as_posix())

    def plan(self) -> MountPlan:
        """assign ordinals to discovered links and workspaces, in order"""
        mounts: list[MountEntry] = []
        for root in self.workspace_roots:
            sources = Path(os.path.abspath(root)) / "src"
            links = list(self.discover(sources))
            for link in links:
                index = len(mounts) + 1
                mounts.append(
                    MountEntry(
                        str(link.target),
                        f"{EXT_ROOT}/{index}/src/{link.relative}",
                        index,
                        read_only=True,
                    )
                )
            index = len(mounts) + 1
            mounts.append(
                MountEntry(str(sources), f"{EXT_ROOT}/{index}/src", index, True)
            )
        ext_roots = tuple(f"{EXT_ROOT}/{m.external_root_index}" for m in mounts)
        return MountPlan(tuple(mounts), ext_roots)


def render_target(target: str) -> str:
    """all-wildcard targets become one '.' per segment: */* -> '. .'"""
    segments = target.split("/")
    if all(s == "*" for s in segments):
        return " ".join("." for _ in segments)
    return target.replace("*", ".")


def flag(value: bool) -> str:
    """render a boolean the way the build script expects it"""
    return "true" if value else "false"


class InvocationAssembler(ShellCmd):
    """Builds the InvocationSpec for either execution mode.

    Both modes share the environment contract of the build script; they
    differ in mounts (containerized only) and in how the build is launched.
    """

    def __init__(
        self,
        config: ConfigFlags,
        flags: BuildFlags,
        planner: Optional[MountPlanner] = None,
    ) -> None:
        self.config = config
        self.flags = flags
        self.planner = planner or MountPlanner(config.workspace_roots)
        self.log = logging.getLogger(self.__class__.__name__)

    @property
    def targets(self) -> str:
        """space separated targets with wildcards normalized for the script"""
        return " ".join(render_target(t) for t in self.config.targets)

    def output_dir(self, location: ProjectLocation) -> str:
        """absolute host directory receiving the binaries"""
        try:
            base = location.path if location.path else Path.cwd()
            return os.path.abspath(base / self.config.bin_path)
        except OSError as e:
            raise ConfigurationError(
                f"Failed to resolve destination path ({self.config.bin_path}): {e}"
            ) from e

    def workdir(self, location: ProjectLocation) -> str:
        """package path handed to the build script"""
        if location.path:
            return os.path.abspath(location.path / self.config.cmd_path)
        return self.config.cmd_path

    def uses_vendor(self, location: ProjectLocation) -> bool:
        return bool(
            location.is_module_based
            and location.path
            and (location.path / VENDOR_DIR).is_dir()
        )

    def environment(self, location: ProjectLocation) -> dict[str, str]:
        """environment contract shared by both execution modes"""
        cfg, flags = self.config, self.flags
        env = {
            "REPO_REMOTE": "" if location.is_local else cfg.remote,
            "REPO_BRANCH": "" if location.is_local else cfg.branch,
            "PACK": cfg.package,
            "DEPS": cfg.dependencies,
            "ARGS": cfg.arguments,
            "OUT": cfg.prefix,
            "FLAG_V": flag(flags.verbose),
            "FLAG_X": flag(flags.steps),
            "FLAG_RACE": flag(flags.race),
            "FLAG_TAGS": flags.tags,
            "FLAG_LDFLAGS": flags.ldflags,
            "FLAG_BUILDMODE": flags.mode,
            "FLAG_BUILDVCS": flags.vcs,
            "FLAG_TRIMPATH": flag(flags.trimpath),
            "TARGETS": self.targets,
        }
        if location.is_module_based:
            env["GO111MODULE"] = "on"
            if cfg.go_proxy:
                env["GOPROXY"] = cfg.go_proxy
            if self.uses_vendor(location):
                self.log.info("Using vendored Go module dependencies")
                env["FLAG_MOD"] = "vendor"
        else:
            env["GO111MODULE"] = "off"
        return env

    def mounts(
        self, location: ProjectLocation, plan: MountPlan
    ) -> tuple[MountEntry, ...]:
        """containerized mounts: deps cache, then project or legacy workspaces"""
        deps_cache = str(self.config.deps_cache)
        mounts = [MountEntry(deps_cache, str(CONTAINED_DEPS_CACHE), 0, True)]
        if location.is_local and location.is_module_based:
            mounts.append(MountEntry(str(location.path), SOURCE_MOUNT))
        mounts.extend(plan.mounts)
        if self.config.mod_cache:
            mod_cache = os.path.abspath(self.config.mod_cache)
            mounts.append(MountEntry(mod_cache, MOD_CACHE_MOUNT))
        return tuple(mounts)

    def assemble(
        self, location: ProjectLocation, mode: ExecutionMode
    ) -> InvocationSpec:
        """combine location, flags and mounts into an InvocationSpec"""
        env = self.environment(location)
        workdir = self.workdir(location)
        if mode is ExecutionMode.CONTAINED:
            if location.is_local:
                env["EXT_GOPATH"] = LOCAL_BUILD_SENTINEL
            return InvocationSpec(
                image="",
                mounts=(),
                env=env,
                targets=self.config.targets,
                workdir=workdir,
                containerless=True,
            )
        output_dir = self.output_dir(location)
        plan = MountPlan()
        if location.is_local and not location.is_module_based:
            plan = self.planner.plan()
            env["EXT_GOPATH"] = plan.joined_roots
        return InvocationSpec(
            image=self.config.image,
            mounts=self.mounts(location, plan),
            env=env,
            targets=self.config.targets,
            workdir=workdir,
            containerless=False,
            output_dir=output_dir,
        )


class Runner(ShellCmd):
    """Executes an InvocationSpec synchronously"""

    def __init__(self, environ: Optional[Mapping[str, str]] = None) -> None:
        self.environ = environ
        self.log = logging.getLogger(self.__class__.__name__)

    def run(self, spec: InvocationSpec) -> None:
        """run the build, raising CommandError on a non-zero exit"""
        if spec.containerless:
            environ = os.environ if self.environ is None else self.environ
            self.cmd(spec.command(), env={**environ, **spec.env})
        else:
            self.cmd(spec.command())


class CrossCompiler(ShellCmd):
    """Drives one cross compilation run"""

    def __init__(
        self,
        config: ConfigFlags,
        flags: BuildFlags,
        docker: Optional[Docker] = None,
        cache: Optional[DependencyCache] = None,
        resolver: Optional[LocationResolver] = None,
        assembler: Optional[InvocationAssembler] = None,
        runner: Optional[Runner] = None,
    ) -> None:
        self.config = config
        self.flags = flags
        self.docker = docker or Docker()
        self.cache = cache or DependencyCache(config.deps_cache)
        self.resolver = resolver or LocationResolver(config.workspace_roots)
        self.assembler = assembler or InvocationAssembler(config, flags)
        self.runner = runner or Runner()
        self.log = logging.getLogger(self.__class__.__name__)

    @property
    def mode(self) -> ExecutionMode:
        if self.config.in_xgo:
            return ExecutionMode.CONTAINED
        return ExecutionMode.CONTAINERIZED

    def setup(self) -> None:
        """make sure the build environment image is available"""
        if self.mode is ExecutionMode.CONTAINERIZED:
            self.docker.check()
            self.docker.ensure_image(self.config.image)

    def cache_dependencies(self) -> list[CacheEntry]:
        urls = self.config.dependency_urls
        if not urls:
            return []
        return self.cache.ensure(urls)

    def plan(self) -> tuple[ProjectLocation, InvocationSpec]:
        """resolve the project and assemble its invocation"""
        location = self.resolver.resolve(self.config.project_ref)
        spec = self.assembler.assemble(location, self.mode)
        return location, spec

    def process(self) -> None:
        """main cross compilation process"""
        location, spec = self.plan()
        self.setup()
        self.cache_dependencies()
        self.log.info(
            "Cross compiling project %s package %s ...",
            location.resolved_identity,
            spec.workdir,
        )
        self.runner.run(spec)

    def dry_run(self) -> None:
        """Display the invocation without running anything.

        Resolves the project and plans mounts, but makes no docker calls and
        downloads nothing.
        """
        location, spec = self.plan()

        print("\n" + "=" * 60)
        print("BUILD PLAN (dry-run)")
        print("=" * 60)

        print("\n[Build Target]")
        print(f"  Mode:              {self.mode.value}")
        print(f"  Image:             {spec.image or '(none)'}")
        print(f"  Targets:           {' '.join(spec.targets)}")
        print(f"  Package:           {spec.workdir}")

        print("\n[Project]")
        print(f"  Reference:         {location.raw_path}")
        print(f"  Identity:          {location.resolved_identity}")
        print(f"  Local:             {location.is_local}")
        print(f"  Go modules:        {location.is_module_based}")

        print("\n[Output]")
        print(f"  {spec.output_dir or '(none)'} -> {OUTPUT_MOUNT}")

        print(f"\n[Mounts] ({len(spec.mounts)})")
        for mount in spec.mounts:
            ro = " (ro)" if mount.read_only else ""
            print(f"  {mount.host_path} -> {mount.container_path}{ro}")

        print("\n[Dependencies]")
        if self.config.dependency_urls:
            for url in self.config.dependency_urls:
                print(f"  {url} -> {self.cache.path_for(url)}")
        else:
            print("  (none)")

        print("\n[Environment]")
        for key, value in spec.env.items():
            print(f"  {key}={value}")

        print("\n[Command]")
        print(f"  {shlex.join(spec.command())}")

        print("\n" + "=" * 60)
        print("End of build plan. No changes were made.")
        print("=" * 60 + "\n")


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """commandline argument parser"""
    parser = argparse.ArgumentParser(
        prog="xgopy",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        description="Go CGO cross compiler wrapper around the xgo docker image",
    )
    opt = parser.add_argument

    # fmt: off
    opt("--go-version", default=DEFAULT_GO_VERSION, help="go version (default: %(default)s)")
    opt("--go-proxy", default="", help="set a global proxy for go modules")
    opt("--pkg", default="", help="sub-package to build if not root import")
    opt("--remote", default="", help="version control remote repository to build")
    opt("--branch", default="", help="version control branch to build")
    opt("--deps", default="", help="cgo dependencies (configure/make based archives)")
    opt("--depsargs", default="", help="cgo dependency configure arguments")
    opt("--targets", default="*/*", help="comma separated targets to build (default: %(default)s)")
    opt("--docker-repo", default="", help="use custom docker repo instead of official distribution")
    opt("--docker-image", default="", help="use custom docker image instead of official distribution")
    opt("--project-path", default="", help="project root directory (default: current directory)")
    opt("--cmd-path", default=".", help="relative directory of the command to build (default: %(default)s)")
    opt("--bin-path", default="bin", help="output directory for binaries (default: %(default)s)")
    opt("--command-prefix", default="", help="prefix to use for output naming")
    opt("--mod-cache", default="", help="host go module cache to share with the image", metavar="DIR")
    opt("-v", dest="verbose", action="store_true", help="print the names of packages as they are compiled")
    opt("-x", dest="steps", action="store_true", help="print the commands as they are executed")
    opt("--race", action="store_true", help="enable data race detection (supported only on amd64)")
    opt("--tags", default="", help="list of build tags to consider satisfied during the build")
    opt("--build-ldflags", default="", help="arguments to pass on each go tool link invocation")
    opt("--build-mode", default="default", help="kind of object file to build (default|archive|exe|pie)")
    opt("--build-vcs", default="", help="stamp binaries with version control information (none|git|hg|svn|bzr)")
    opt("--build-trim-path", action="store_true", help="remove all file system paths from the resulting executable")
    opt("-n", "--dry-run", action="store_true", help="show build plan without building")
    opt("-V", "--version", action="version", version=f"%(prog)s {__version__}")
    # fmt: on

    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> None:
    """commandline api entrypoint"""
    log = logging.getLogger("xgopy")
    args = parse_args(argv)
    log.info("Starting xgopy/%s", __version__)

    config = ConfigFlags.from_args(args, os.environ)
    log.debug("config: %s", config)
    flags = BuildFlags.from_args(args)
    log.debug("flags: %s", flags)

    compiler = CrossCompiler(config, flags)
    try:
        if args.dry_run:
            compiler.dry_run()
        else:
            compiler.process()
    except CommandError as e:
        log.critical("Failed to cross compile package: %s", e)
        sys.exit(e.returncode or 1)
    except BuildError as e:
        log.critical("%s", e)
        sys.exit(1)
    log.info("Completed!")


if __name__ == "__main__":
    main()
