import time
from datetime import datetime

from ..setup.logging import logger
from .interfaces import Job


class JobOrchestrator:
    def __init__(self, job: Job):
        self.job = job

    def run(self):
        """
        Validate and run the job, timing the whole execution.

        Returns:
            The job's result, or None when its configuration is invalid.
        """
        start_time = time.perf_counter()

        logger.info(f"Orchestrator start: {datetime.now():%Y-%m-%d %H:%M:%S}")
        logger.info(f"Job: {self.job.get_name()}")

        if not self.job.validate_config():
            logger.error(f"[ERROR] Invalid configuration for job: {self.job.get_name()}")
            return None

        try:
            result = self.job.run()

            if getattr(result, "succeeded", True):
                logger.info(f"[SUCCESS] {self.job.get_name()} completed successfully")
            else:
                logger.error(f"[ERROR] {self.job.get_name()} finished as {result.state.value}")
            return result

        except Exception as e:
            logger.error(f"[ERROR] {self.job.get_name()} failed: {e}")
            raise
        finally:
            execution_time = time.perf_counter() - start_time
            logger.info(f"[METRICS] Total execution time: {execution_time:.2f} seconds")
