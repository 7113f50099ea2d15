"""Ticketing backend: Azure DevOps work-item creation over the REST API."""

from __future__ import annotations

import logging
from typing import Protocol
from urllib.parse import quote

import httpx

from meeting_tasks.config import Settings
from meeting_tasks.delivery.models import CreatedWorkItem, PatchOperation
from meeting_tasks.errors import TicketingError

logger = logging.getLogger(__name__)


class TicketingBackend(Protocol):
    async def create_work_item(
        self, work_item_type: str, operations: list[PatchOperation]
    ) -> CreatedWorkItem: ...


def work_item_url(org_url: str, project: str, work_item_id: int) -> str:
    """Canonical edit URL, used when the backend omits one."""
    return f"{org_url.rstrip('/')}/{quote(project)}/_workitems/edit/{work_item_id}"


class AzureDevOpsBackend:
    """Creates work items with a personal access token (basic auth)."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        org_url: str,
        project: str,
        pat: str,
        api_version: str = "7.1",
    ) -> None:
        self.client = client
        self.org_url = org_url.rstrip("/")
        self.project = project
        self.pat = pat
        self.api_version = api_version

    @classmethod
    def from_settings(cls, settings: Settings, client: httpx.AsyncClient) -> AzureDevOpsBackend:
        return cls(
            client,
            org_url=settings.devops_org_url,
            project=settings.devops_project,
            pat=settings.devops_pat,
            api_version=settings.devops_api_version,
        )

    async def create_work_item(
        self, work_item_type: str, operations: list[PatchOperation]
    ) -> CreatedWorkItem:
        """POST a JSON Patch document; returns the new id and its web URL.

        HTTP status failures propagate as ``httpx.HTTPStatusError`` so the
        retry wrapper can tell transient from terminal errors.

        Raises:
            TicketingError: If the response carries no work-item id.
        """
        url = (
            f"{self.org_url}/{quote(self.project)}/_apis/wit/workitems/"
            f"${quote(work_item_type)}"
        )
        response = await self.client.post(
            url,
            params={"api-version": self.api_version},
            json=[op.to_dict() for op in operations],
            headers={"Content-Type": "application/json-patch+json"},
            auth=("", self.pat),
        )
        response.raise_for_status()

        payload = response.json()
        work_item_id = payload.get("id")
        if not work_item_id:
            raise TicketingError("Failed to create work item - no ID returned")

        html_link = payload.get("_links", {}).get("html", {}).get("href")
        return CreatedWorkItem(
            id=int(work_item_id),
            url=html_link or work_item_url(self.org_url, self.project, int(work_item_id)),
        )
