"""
Sync-specific command implementations
Brings a project's working directory up to date and runs post-sync processing
"""

from typing import Dict, Any

from utils.async_base import AsyncCommand, AsyncResult, ProcessError


class SyncProjectCommand(AsyncCommand):
    """Standardized command for syncing one version control project"""

    def __init__(self, project, **kwargs):
        super().__init__(**kwargs)
        self.project = project

    async def execute(self) -> AsyncResult[Dict[str, Any]]:
        """Execute the sync command"""
        try:
            self._update_progress(
                f"Syncing {self.project.name} ({self.project.project_type()})...",
                "info",
            )

            sync_result = await self.project.sync()
            if sync_result.is_error:
                self._update_progress(
                    f"Sync failed for {self.project.name}: {sync_result.error}",
                    "error",
                )
                return AsyncResult.error(sync_result.error)

            compile_result = await self.project.compile()
            if compile_result.is_error:
                self._update_progress(
                    f"Post-sync processing failed for {self.project.name}", "warning"
                )
                return AsyncResult.partial(
                    self._result_data(sync_result.data), compile_result.error
                )

            self._update_progress(
                f"Sync completed for {self.project.name}", "success"
            )
            return AsyncResult.success(
                self._result_data(sync_result.data),
                message=sync_result.message,
                metadata=sync_result.metadata,
            )

        except Exception as e:
            self.logger.exception(f"Sync command failed for {self.project.name}")
            return AsyncResult.error(
                ProcessError(f"Sync failed: {str(e)}", error_code="SYNC_ERROR")
            )

    def _result_data(self, changed_files) -> Dict[str, Any]:
        return {
            "project": self.project.name,
            "project_type": self.project.project_type(),
            "changed_files": changed_files or {},
        }
