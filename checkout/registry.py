# checkout/registry.py
"""
Per-project controller registry.

Each open project gets exactly one CheckoutController; there is no
process-wide checkout state beyond this mapping.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, List, Optional

from checkout.controller import CheckoutController
from checkout.errors import ProjectAlreadyOpenError, ProjectNotFoundError
from pricing.models import ProjectParams

_logger = logging.getLogger(__name__)

ControllerFactory = Callable[[str], CheckoutController]


class CheckoutRegistry:
    """Creates, looks up and disposes controllers by project id."""

    def __init__(self, factory: ControllerFactory):
        self._factory = factory
        self._controllers: Dict[str, CheckoutController] = {}

    def create(self, project_id: str, params: Optional[ProjectParams] = None) -> CheckoutController:
        """
        Open a checkout for a project.

        Raises:
            ProjectAlreadyOpenError: a controller for this project exists
        """
        if project_id in self._controllers:
            raise ProjectAlreadyOpenError(project_id)
        controller = self._factory(project_id)
        if params is not None:
            controller.update_params(params)
        self._controllers[project_id] = controller
        _logger.info(f"Opened checkout for project {project_id}", extra={"project_id": project_id})
        return controller

    def get(self, project_id: str) -> CheckoutController:
        """
        Raises:
            ProjectNotFoundError: no open checkout for this project
        """
        controller = self._controllers.get(project_id)
        if controller is None:
            raise ProjectNotFoundError(project_id)
        return controller

    async def dispose(self, project_id: str) -> None:
        """Dispose and forget one controller."""
        controller = self._controllers.pop(project_id, None)
        if controller is None:
            raise ProjectNotFoundError(project_id)
        await controller.dispose()

    async def dispose_all(self) -> None:
        for project_id in self.project_ids():
            await self.dispose(project_id)

    def project_ids(self) -> List[str]:
        return sorted(self._controllers)

    def __contains__(self, project_id: str) -> bool:
        return project_id in self._controllers

    def __len__(self) -> int:
        return len(self._controllers)
