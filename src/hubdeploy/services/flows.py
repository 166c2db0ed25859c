"""Flow execution façade over an external job runner."""

import logging
from typing import Callable, List, Optional, Protocol

from uvicorn.importer import ImportFromStringError, import_from_string

from hubdeploy.models.flow import Flow, JobHandle, JobSpec
from hubdeploy.models.target import HubConfig

JobListener = Callable[[JobHandle], None]


class JobRunner(Protocol):
    """Executes flows on the content-processing framework.

    ``submit`` must return without waiting for the job; the runner may run
    several submitted jobs in parallel and calls ``listener`` when one ends.
    """

    def submit(self, job: JobSpec, listener: Optional[JobListener] = None) -> JobHandle: ...

    async def run_to_completion(self, job: JobSpec) -> JobHandle: ...


class FlowService:
    """Runs flows through a JobRunner."""

    def __init__(self, runner: JobRunner, default_batch_size: int = 100):
        """Initialize flow service.

        Args:
            runner: Job runner collaborator
            default_batch_size: Batch size when callers don't pass one
        """
        self.logger = logging.getLogger("hubdeploy.flows")
        self.runner = runner
        self.default_batch_size = default_batch_size

    def run_flow(
        self,
        flow: Flow,
        batch_size: Optional[int] = None,
        listener: Optional[JobListener] = None,
    ) -> JobHandle:
        """Submit a flow; returns immediately with the job handle."""
        job = JobSpec(flow=flow, batch_size=batch_size or self.default_batch_size)
        handle = self.runner.submit(job, listener)
        self.logger.info(
            f"Submitted flow {flow.entity_name}/{flow.flow_name} "
            f"(batch={job.batch_size}) as job {handle.job_id}"
        )
        return handle

    def run_flows_in_parallel(self, *flows: Flow) -> List[JobHandle]:
        """Submit several flows at once; the runner decides how they overlap."""
        return [self.run_flow(flow) for flow in flows]

    async def test_flow(self, flow: Flow) -> JobHandle:
        """Run a flow and wait for it to finish."""
        self.logger.info(f"Test run of flow {flow.entity_name}/{flow.flow_name}")
        job = JobSpec(flow=flow, batch_size=self.default_batch_size)
        handle = await self.runner.run_to_completion(job)
        self.logger.info(f"Test run {handle.job_id} ended: {handle.status.value}")
        return handle


def load_job_runner(import_string: str, config: HubConfig) -> JobRunner:
    """Build the job runner named by a ``"module:attribute"`` string.

    The attribute is a factory called with the hub configuration.

    Raises:
        ValueError: If the string cannot be imported or the factory is not callable
    """
    try:
        factory = import_from_string(import_string)
    except ImportFromStringError as e:
        raise ValueError(f"Cannot load job runner {import_string!r}: {e}") from e
    if not callable(factory):
        raise ValueError(f"Job runner factory {import_string!r} is not callable")
    return factory(config)
