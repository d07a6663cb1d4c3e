from __future__ import annotations

import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Protocol, Sequence

import docker
import structlog

from notes_deploy.core import BuildFailure, TestFailure, monotonic_ms

log = structlog.get_logger(__name__)

_OUTPUT_TAIL_CHARS = 2000


@dataclass(frozen=True, slots=True)
class Artifact:
    """
    A packaged, runnable image addressed by (repository, version_tag).

    `digest` is the content address; two tags may share one digest.
    """

    repository: str
    version_tag: str
    digest: str
    local_ref: str

    @property
    def ref(self) -> str:
        return f"{self.repository}:{self.version_tag}"

    def to_dict(self) -> dict[str, str]:
        return {
            "repository": self.repository,
            "version_tag": self.version_tag,
            "digest": self.digest,
            "local_ref": self.local_ref,
            "ref": self.ref,
        }


@dataclass(frozen=True, slots=True)
class StepResult:
    name: str
    command: tuple[str, ...]
    returncode: int
    duration_ms: int
    output_tail: str = ""

    def to_dict(self) -> dict[str, object]:
        return {
            "name": self.name,
            "command": list(self.command),
            "returncode": self.returncode,
            "duration_ms": self.duration_ms,
        }


class BuildProducer(Protocol):
    """Opaque compile/test/package toolchain."""

    def compile(self) -> StepResult: ...
    def test(self) -> StepResult: ...
    def package(self) -> StepResult: ...


class ImagePackager(Protocol):
    def build_image(self, *, context_dir: Path, repository: str, tag: str) -> str:
        """Build an image tagged repository:tag; return its content digest."""
        ...


Runner = Callable[..., subprocess.CompletedProcess]


def _tail(text: str | None) -> str:
    return (text or "")[-_OUTPUT_TAIL_CHARS:].strip()


@dataclass(slots=True)
class CommandBuildProducer:
    """
    Runs one external command per step (Maven by default) in `source_dir`.
    """

    source_dir: Path
    compile_cmd: Sequence[str] = ("mvn", "-B", "clean", "compile")
    test_cmd: Sequence[str] = ("mvn", "-B", "test")
    package_cmd: Sequence[str] = ("mvn", "-B", "package", "-DskipTests")
    timeout_s: int = 1800
    runner: Runner = field(default=subprocess.run, repr=False)

    def _run(
        self, name: str, cmd: Sequence[str], failure: type[BuildFailure]
    ) -> StepResult:
        argv = tuple(str(x) for x in cmd)
        t0 = monotonic_ms()
        log.info("build.step.start", step=name, command=list(argv))
        try:
            proc = self.runner(
                list(argv),
                cwd=str(self.source_dir),
                capture_output=True,
                text=True,
                timeout=self.timeout_s,
            )
        except subprocess.TimeoutExpired as e:
            raise failure(f"{name}: timed out after {self.timeout_s}s") from e
        except (subprocess.SubprocessError, OSError) as e:
            raise failure(f"{name}: could not run {argv[0]!r}: {e}") from e

        duration = monotonic_ms() - t0
        output = _tail((proc.stdout or "") + (proc.stderr or ""))
        if proc.returncode != 0:
            raise failure(
                f"{name}: {' '.join(argv)} exited with {proc.returncode}"
                + (f"\n{output}" if output else "")
            )
        return StepResult(
            name=name,
            command=argv,
            returncode=proc.returncode,
            duration_ms=duration,
            output_tail=output,
        )

    def compile(self) -> StepResult:
        return self._run("compile", self.compile_cmd, BuildFailure)

    def test(self) -> StepResult:
        return self._run("test", self.test_cmd, TestFailure)

    def package(self) -> StepResult:
        return self._run("package", self.package_cmd, BuildFailure)


class DockerImagePackager:
    """Builds the image from the Dockerfile in the context directory."""

    def __init__(self, client: docker.DockerClient | None = None) -> None:
        self._client = client

    @property
    def client(self) -> docker.DockerClient:
        if self._client is None:
            self._client = docker.from_env()
        return self._client

    def build_image(self, *, context_dir: Path, repository: str, tag: str) -> str:
        ref = f"{repository}:{tag}"
        if not (Path(context_dir) / "Dockerfile").is_file():
            raise BuildFailure(f"No Dockerfile in {context_dir}")
        try:
            image, _ = self.client.images.build(
                path=str(context_dir), tag=ref, rm=True, pull=False
            )
        except docker.errors.BuildError as e:
            raise BuildFailure(f"docker build {ref} failed: {e.msg}") from e
        except docker.errors.APIError as e:
            raise BuildFailure(f"Docker API error while building {ref}: {e}") from e
        return str(image.id)


class ArtifactBuilder:
    """
    Produces an immutable, versioned artifact from verified source.

    compile/test/package are separate calls so each can be its own stage.
    """

    def __init__(
        self,
        *,
        producer: BuildProducer,
        packager: ImagePackager,
        source_dir: Path,
        repository: str,
    ) -> None:
        self.producer = producer
        self.packager = packager
        self.source_dir = Path(source_dir)
        self.repository = repository

    def compile(self) -> StepResult:
        return self.producer.compile()

    def test(self) -> StepResult:
        return self.producer.test()

    def package(self, build_tag: str) -> Artifact:
        self.producer.package()
        digest = self.packager.build_image(
            context_dir=self.source_dir, repository=self.repository, tag=build_tag
        )
        if not digest:
            raise BuildFailure(
                f"Packaging {self.repository}:{build_tag} produced no image digest"
            )
        artifact = Artifact(
            repository=self.repository,
            version_tag=build_tag,
            digest=digest,
            local_ref=f"{self.repository}:{build_tag}",
        )
        log.info("artifact.packaged", ref=artifact.ref, digest=artifact.digest)
        return artifact
