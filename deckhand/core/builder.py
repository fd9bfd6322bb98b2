"""ArtifactBuilder — builds and tags container images in parallel.

Each BuildSpec becomes one image carrying two tags: the run's version tag
and ``latest``.  Builds are independent: one failure never aborts its
siblings, and the returned list always has one ``ArtifactResult`` per
spec, in input order.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor

from deckhand.core.process import (
    CancelToken,
    OperationCancelled,
    ProcessLaunchError,
    ProcessRunner,
    ProcessTimeout,
)
from deckhand.models.artifacts import ArtifactOutcome, ArtifactResult, BuildSpec

logger = logging.getLogger(__name__)

# Upper bound on concurrent image builds, whatever the configuration says.
MAX_BUILD_WORKERS = 8


class ArtifactBuildFailure(RuntimeError):
    """One or more artifacts failed to build."""

    def __init__(self, failed: Sequence[ArtifactResult]) -> None:
        self.failed = list(failed)
        summary = "; ".join(f"{r.artifact}: {r.error}" for r in self.failed)
        super().__init__(f"{len(self.failed)} artifact(s) failed to build: {summary}")


def ensure_unique_tags(specs: Sequence[BuildSpec]) -> None:
    """Reject a build set that would assign the same name or tag twice."""
    names = [s.artifact for s in specs]
    if len(names) != len(set(names)):
        raise ValueError(f"Duplicate artifact names in build set: {names}")
    refs = [s.version_ref for s in specs]
    if len(refs) != len(set(refs)):
        raise ValueError(f"Duplicate image tags in build set: {refs}")


class ArtifactBuilder:
    """Builds image artifacts with bounded parallelism.

    Parameters
    ----------
    runner:
        Process runner used for every builder invocation.
    builder_binary:
        The image builder CLI (``docker``, ``podman``, ...).
    max_workers:
        Concurrency limit.  Defaults to the number of specs; always capped
        at ``MAX_BUILD_WORKERS``.
    build_timeout:
        Per-build timeout in seconds.
    """

    def __init__(
        self,
        runner: ProcessRunner,
        *,
        builder_binary: str = "docker",
        max_workers: int | None = None,
        build_timeout: float = 1800.0,
    ) -> None:
        self._runner = runner
        self._binary = builder_binary
        self._max_workers = max_workers
        self._build_timeout = build_timeout

    def worker_count(self, spec_count: int) -> int:
        limit = self._max_workers or spec_count
        return max(1, min(limit, spec_count, MAX_BUILD_WORKERS))

    def build(
        self, specs: Sequence[BuildSpec], cancel: CancelToken | None = None
    ) -> list[ArtifactResult]:
        """Build every spec and return one result per spec, in input order.

        Waits for every launched build before returning, even when some
        of them fail.
        """
        ensure_unique_tags(specs)
        if not specs:
            return []

        # One slot per spec; each worker writes only its own index.
        slots: list[ArtifactResult | None] = [None] * len(specs)

        def _work(index: int, spec: BuildSpec) -> None:
            slots[index] = self._build_one(spec, cancel)

        workers = self.worker_count(len(specs))
        logger.info("Building %d artifact(s) with %d worker(s)", len(specs), workers)
        with ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="deckhand-build"
        ) as pool:
            futures = [pool.submit(_work, i, spec) for i, spec in enumerate(specs)]
            for future in futures:
                future.result()

        results = [r for r in slots if r is not None]
        built = sum(1 for r in results if r.built)
        logger.info("Artifacts built: %d/%d", built, len(results))
        return results

    # ------------------------------------------------------------------
    # Single build
    # ------------------------------------------------------------------

    def _build_one(self, spec: BuildSpec, cancel: CancelToken | None) -> ArtifactResult:
        started = time.monotonic()

        if not spec.context.is_dir():
            return self._failed(spec, started, f"build context not found: {spec.context}")
        if not spec.dockerfile.is_file():
            return self._failed(spec, started, f"dockerfile not found: {spec.dockerfile}")

        # Tags this build has applied; removed again if the artifact fails.
        applied: list[str] = []
        try:
            build = self._runner.run(
                [
                    self._binary, "build",
                    "-f", str(spec.dockerfile),
                    "-t", spec.version_ref,
                    str(spec.context),
                ],
                timeout=self._build_timeout,
                cancel=cancel,
            )
            if not build.ok:
                return self._failed(
                    spec, started,
                    f"build exited {build.exit_code}: {build.output_tail(5)}",
                )
            applied.append(spec.version_ref)

            tag = self._runner.run(
                [self._binary, "tag", spec.version_ref, spec.latest_ref],
                timeout=60.0,
                cancel=cancel,
            )
            if not tag.ok:
                self._discard(applied)
                return self._failed(
                    spec, started,
                    f"tagging {spec.latest_ref} exited {tag.exit_code}: {tag.output_tail(5)}",
                )
            applied.append(spec.latest_ref)

            digest = self._inspect_digest(spec, cancel)
        except (ProcessTimeout, ProcessLaunchError) as exc:
            self._discard(applied)
            return self._failed(spec, started, str(exc))
        except OperationCancelled as exc:
            self._discard(applied)
            return self._failed(spec, started, f"cancelled ({exc.reason})")

        duration = time.monotonic() - started
        logger.info(
            "Built %s as %s and %s (%.1fs)",
            spec.artifact, spec.version_ref, spec.latest_ref, duration,
        )
        return ArtifactResult(
            artifact=spec.artifact,
            image_ref=spec.version_ref,
            outcome=ArtifactOutcome.BUILT,
            digest=digest,
            duration_seconds=duration,
        )

    def _inspect_digest(self, spec: BuildSpec, cancel: CancelToken | None) -> str:
        result = self._runner.run(
            [self._binary, "image", "inspect", "--format", "{{.Id}}", spec.version_ref],
            timeout=60.0,
            cancel=cancel,
        )
        if not result.ok:
            logger.warning("Could not read digest of %s", spec.version_ref)
            return ""
        return result.stdout.strip()

    def _discard(self, refs: list[str]) -> None:
        """Remove *refs* so a failed artifact leaves both tags or neither."""
        if not refs:
            return
        try:
            result = self._runner.run([self._binary, "rmi", *refs], timeout=60.0)
        except (ProcessTimeout, ProcessLaunchError) as exc:
            logger.warning("Could not remove %s: %s", " ".join(refs), exc)
            return
        if not result.ok:
            logger.warning("Could not remove %s: %s", " ".join(refs), result.output_tail(3))

    @staticmethod
    def _failed(spec: BuildSpec, started: float, error: str) -> ArtifactResult:
        logger.error("Artifact %s failed: %s", spec.artifact, error)
        return ArtifactResult(
            artifact=spec.artifact,
            image_ref=spec.version_ref,
            outcome=ArtifactOutcome.FAILED,
            error=error,
            duration_seconds=time.monotonic() - started,
        )
