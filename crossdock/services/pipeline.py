"""Pipeline orchestration.

One run:

    1. Validate the trigger, expand the matrix and compute the tag set
       (nothing built yet).
    2. Dispatch one build job per target on a bounded worker pool.
    3. Concurrently, assemble the image; the assembler blocks on the
       artifact store until its triples arrive.
    4. Once assembly succeeds, publish under the planned tag set.

Build failures stay in their job. With fail-fast enabled, the first failed
job cancels queued jobs and stops running ones at their next checkpoint.
Assembly, tag and publish failures end the run.
"""

from __future__ import annotations

import threading
from collections.abc import Mapping, Sequence
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field

from crossdock.core.config import PipelineConfig
from crossdock.core.result import Err, Ok, Result
from crossdock.core.workspace import Workspace
from crossdock.output.console import ConsoleProtocol, Style
from crossdock.services.artifacts import ArtifactStore
from crossdock.services.build import BuildJobRunner, describe_job_error
from crossdock.services.emulation import Emulator
from crossdock.services.errors import ConfigurationError, JobCancelled, JobError, StageError
from crossdock.services.image import AssembleError, ImageAssembler, ImageRequest
from crossdock.services.layers import LayerBuilder, LayerCache, TarLayerBuilder
from crossdock.services.matrix import expand_matrix, select_targets, specs_from_config
from crossdock.services.model import (
    Artifact,
    AssembledImage,
    BuildJob,
    BuildMode,
    TagSet,
    TriggerMetadata,
)
from crossdock.services.publish import Publisher, PublishReceipt
from crossdock.services.registry import CredentialProvider, Registry
from crossdock.services.tags import compute_tags
from crossdock.services.toolchains import CARGO_PROFILE, Toolchain, ToolchainProfile
from crossdock.services.trigger import build_mode_for

__all__ = [
    "RunPlan",
    "PipelineReport",
    "Pipeline",
    "plan_run",
    "run_jobs",
    "image_name_for",
    "repository_for",
]


def _empty_results() -> dict[str, Result[Artifact, JobError]]:
    return {}


def image_name_for(config: PipelineConfig) -> str:
    return config.registry.image or config.project.binary


def repository_for(config: PipelineConfig) -> str:
    name = image_name_for(config)
    host = config.registry.host
    return f"{host}/{name}" if host else name


@dataclass(frozen=True, slots=True)
class RunPlan:
    """Everything decided before the first job starts."""

    mode: BuildMode
    jobs: tuple[BuildJob, ...]
    tags: TagSet
    image: ImageRequest | None
    repository: str


def plan_run(
    config: PipelineConfig,
    trigger: TriggerMetadata,
    *,
    only: Sequence[str] = (),
    mode: BuildMode | None = None,
    profile: ToolchainProfile = CARGO_PROFILE,
) -> Result[RunPlan, ConfigurationError]:
    """Validate inputs and expand the matrix. Pure: no I/O."""
    run_mode = mode or build_mode_for(trigger, config.project.release_branches)
    selected = select_targets(specs_from_config(config.targets), only)
    if isinstance(selected, Err):
        return selected
    jobs = expand_matrix(selected.value, mode=run_mode, profile=profile)
    if isinstance(jobs, Err):
        return jobs

    tags = _compute_tags(config, trigger)
    if isinstance(tags, Err):
        return tags

    image = None
    if config.image.enabled:
        image = ImageRequest(
            platforms=config.image.platforms,
            base_image=config.image.base,
            binary=config.project.binary,
            binary_dir=config.image.binary_dir,
            description=config.image.description,
        )

    return Ok(
        RunPlan(
            mode=run_mode,
            jobs=jobs.value,
            tags=tags.value,
            image=image,
            repository=repository_for(config),
        )
    )


def _compute_tags(config: PipelineConfig, trigger: TriggerMetadata) -> Result[TagSet, ConfigurationError]:
    return compute_tags(
        trigger,
        image_name=image_name_for(config),
        description=config.image.description,
        source=config.registry.source,
        sha_prefix=config.tags.sha_prefix,
        sha_length=config.tags.sha_length,
        schedule_pattern=config.tags.schedule_pattern,
    )


@dataclass(slots=True)
class PipelineReport:
    """Outcome of one run.

    ``error`` holds the stage error that ended the run, if any. Job failures
    live in ``results`` and only end the run through the assembler.
    """

    mode: BuildMode | None = None
    results: dict[str, Result[Artifact, JobError]] = field(default_factory=_empty_results)
    tags: TagSet | None = None
    image: AssembledImage | None = None
    receipt: PublishReceipt | None = None
    error: StageError | None = None

    @property
    def succeeded(self) -> tuple[str, ...]:
        return tuple(t for t, r in self.results.items() if isinstance(r, Ok))

    @property
    def failed(self) -> dict[str, JobError]:
        return {t: r.error for t, r in self.results.items() if isinstance(r, Err)}

    @property
    def ok(self) -> bool:
        return self.error is None and not self.failed


class Pipeline:
    """Wires the stages of one run together.

    Every run gets a fresh ``ArtifactStore``; nothing survives between runs
    except the layer cache on disk.
    """

    def __init__(
        self,
        *,
        config: PipelineConfig,
        workspace: Workspace,
        toolchain: Toolchain,
        registry: Registry,
        credentials: CredentialProvider,
        emulator: Emulator,
        host_os_arch: str | None,
        console: ConsoleProtocol,
        layer_builder: LayerBuilder | None = None,
        use_layer_cache: bool = True,
    ) -> None:
        self._config = config
        self._workspace = workspace
        self._toolchain = toolchain
        self._registry = registry
        self._credentials = credentials
        self._emulator = emulator
        self._host_os_arch = host_os_arch
        self._console = console
        self._layer_builder = layer_builder or TarLayerBuilder()
        self._use_layer_cache = use_layer_cache
        self.store = ArtifactStore()

    def run(
        self,
        trigger: TriggerMetadata,
        *,
        only: Sequence[str] = (),
        mode: BuildMode | None = None,
        fail_fast: bool | None = None,
        dry_run: bool = False,
    ) -> PipelineReport:
        report = PipelineReport()
        planned = plan_run(
            self._config, trigger, only=only, mode=mode, profile=self._toolchain.profile
        )
        if isinstance(planned, Err):
            report.error = planned.error
            return report
        plan = planned.value
        report.mode = plan.mode

        run_cfg = self._config.run
        fail_fast = run_cfg.fail_fast if fail_fast is None else fail_fast
        store = self.store = ArtifactStore()
        cancel = threading.Event()

        built = {job.triple for job in plan.jobs}
        if plan.image is not None:
            for triple in plan.image.required_triples:
                if triple not in built:
                    store.mark_failed(triple, "not in the build matrix")

        runner = BuildJobRunner(
            toolchain=self._toolchain,
            store=store,
            target_root=self._workspace.target_dir,
            console=self._console,
            retry_attempts=run_cfg.retry_attempts,
            retry_delay_seconds=run_cfg.retry_delay_seconds,
            cancel=cancel,
        )

        report.tags = plan.tags

        self._console.header(f"Building {len(plan.jobs)} target(s) ({plan.mode})")
        with ThreadPoolExecutor(max_workers=1, thread_name_prefix="crossdock-image") as stage:
            image_future: Future[Result[AssembledImage, AssembleError]] | None = None
            if plan.image is not None:
                image_future = stage.submit(self._assembler(store).assemble, plan.image)

            report.results = run_jobs(
                runner,
                store,
                plan.jobs,
                console=self._console,
                max_parallel=run_cfg.max_parallel,
                fail_fast=fail_fast,
                cancel=cancel,
            )
            assembled = image_future.result() if image_future is not None else None

        if assembled is None:
            self._console.print("image disabled: nothing to publish", Style.DIM)
            return report
        if isinstance(assembled, Err):
            report.error = assembled.error
            return report
        report.image = assembled.value

        if dry_run:
            self._console.info("dry run: skipping publish")
            report.receipt = PublishReceipt(
                repository=plan.repository,
                tags=plan.tags.sorted_tags(),
                platforms=report.image.platforms,
                pushed=False,
            )
            return report

        publisher = Publisher(
            registry=self._registry,
            repository=plan.repository,
            credentials=self._credentials,
            console=self._console,
        )
        published = publisher.publish(report.image, plan.tags, trigger)
        if isinstance(published, Err):
            report.error = published.error
            return report
        report.receipt = published.value
        return report

    def _assembler(self, store: ArtifactStore) -> ImageAssembler:
        cache = LayerCache(self._workspace.layer_cache_dir) if self._use_layer_cache else None
        return ImageAssembler(
            store=store,
            layer_builder=self._layer_builder,
            emulator=self._emulator,
            host_os_arch=self._host_os_arch,
            staging_dir=self._workspace.staging_dir,
            console=self._console,
            cache=cache,
            artifact_wait_seconds=self._config.run.artifact_wait_seconds,
        )


def run_jobs(
    runner: BuildJobRunner,
    store: ArtifactStore,
    jobs: Sequence[BuildJob],
    *,
    console: ConsoleProtocol,
    max_parallel: int,
    fail_fast: bool = False,
    cancel: threading.Event | None = None,
) -> dict[str, Result[Artifact, JobError]]:
    """Run jobs on a bounded pool; results keyed by triple, in job order.

    ``cancel`` must be the event the runner was built with for fail-fast to
    stop running jobs.
    """
    cancel = cancel or threading.Event()
    results: dict[str, Result[Artifact, JobError]] = {}
    max_workers = max(1, min(max_parallel, len(jobs)))

    with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="crossdock-job") as pool:
        futures = {pool.submit(runner.run, job): job for job in jobs}
        for future in as_completed(futures):
            job = futures[future]
            if future.cancelled():
                continue
            result = future.result()
            results[job.triple] = result
            if isinstance(result, Err) and not isinstance(result.error, JobCancelled):
                console.error(f"{job.triple}: {describe_job_error(result.error)}")
                if fail_fast and not cancel.is_set():
                    console.warning("fail-fast: cancelling remaining jobs")
                    cancel.set()
                    for pending in futures:
                        pending.cancel()

    for job in jobs:
        if job.triple not in results:
            results[job.triple] = Err(JobCancelled(target=job.triple))
            store.mark_failed(job.triple, "cancelled")
    return _in_order(results, jobs)


def _in_order(
    results: Mapping[str, Result[Artifact, JobError]], jobs: Sequence[BuildJob]
) -> dict[str, Result[Artifact, JobError]]:
    return {job.triple: results[job.triple] for job in jobs}
