"""Remote content gateway for the four migrated item kinds.

The migration engine talks to the remote system only through the
:class:`ContentGateway` protocol. :class:`BacklogContentGateway` implements
it on top of :class:`BacklogClient`.
"""

from typing import Any, Protocol

from pydantic import BaseModel, Field

from backlog_migrate import config
from backlog_migrate.clients.backlog_client import BacklogClient
from backlog_migrate.clients.exceptions import ResourceNotFoundError
from backlog_migrate.models.migrate_item import MigrateItem
from backlog_migrate.type_definitions import ItemType

logger = config.logger

COMMENT_KEY_SEPARATOR = "#comment-"


class ProjectInfo(BaseModel):
    """Identity of the migrated project."""

    id: int
    key: str
    name: str = ""


class RemoteDocument(BaseModel):
    """Current remote state of one item."""

    item_type: ItemType
    item_id: int = 0
    parent_id: int | None = None
    item_key: str
    name: str = ""
    url: str = ""
    content: str = ""
    updated_at: str | None = None
    attachment_names: list[str] = Field(default_factory=list)


class ContentGateway(Protocol):
    """Narrow interface the migration engine needs from the remote system."""

    def get_project(self, project_key: str) -> ProjectInfo: ...

    def list_issues(self, project: ProjectInfo) -> list[RemoteDocument]: ...

    def list_comments(self, issue: RemoteDocument) -> list[RemoteDocument]: ...

    def list_wikis(self, project: ProjectInfo) -> list[RemoteDocument]: ...

    def list_issue_types(self, project: ProjectInfo) -> list[RemoteDocument]: ...

    def fetch_current(self, item: MigrateItem) -> RemoteDocument: ...

    def push(self, item: MigrateItem, content: str) -> str | None: ...


def comment_key(issue_key: str, comment_id: int) -> str:
    """Identity key of a comment, e.g. ``PROJ-1#comment-42``."""
    return f"{issue_key}{COMMENT_KEY_SEPARATOR}{comment_id}"


def split_comment_key(item_key: str) -> tuple[str, int]:
    """Split a comment key into issue key and comment id.

    Raises:
        ValueError: If the key is not a comment key

    """
    issue_key, separator, comment_id = item_key.partition(COMMENT_KEY_SEPARATOR)
    if not separator or not issue_key or not comment_id.isdigit():
        msg = f"Malformed comment key: {item_key!r}"
        raise ValueError(msg)
    return issue_key, int(comment_id)


class IssueTypeCache:
    """Issue types per project key, owned by one gateway instance."""

    def __init__(self) -> None:
        self._entries: dict[str, list[dict[str, Any]]] = {}

    def get(self, project_key: str) -> list[dict[str, Any]] | None:
        return self._entries.get(project_key)

    def put(self, project_key: str, issue_types: list[dict[str, Any]]) -> None:
        self._entries[project_key] = issue_types

    def update(self, project_key: str, issue_type: dict[str, Any]) -> None:
        """Replace one cached issue type with a fresher copy."""
        entries = self._entries.get(project_key)
        if entries is None:
            return
        self._entries[project_key] = [
            issue_type if entry.get("id") == issue_type.get("id") else entry for entry in entries
        ]

    def invalidate(self, project_key: str | None = None) -> None:
        if project_key is None:
            self._entries.clear()
        else:
            self._entries.pop(project_key, None)


class BacklogContentGateway:
    """Fetches and updates issue, comment, wiki and issue type content in Backlog."""

    def __init__(self, client: BacklogClient, project_key: str = "") -> None:
        """Initialize the gateway.

        Args:
            client: Backlog API client
            project_key: Project the workspace migrates, needed for issue types

        """
        self.client = client
        self.project_key = project_key
        self.issue_type_cache = IssueTypeCache()

    # ------------------------------------------------------------------ urls

    def issue_url(self, issue_key: str) -> str:
        return f"{self.client.base_url}/view/{issue_key}"

    def comment_url(self, issue_key: str, comment_id: int) -> str:
        return f"{self.issue_url(issue_key)}#comment-{comment_id}"

    def wiki_url(self, wiki_id: int) -> str:
        return f"{self.client.base_url}/alias/wiki/{wiki_id}"

    def issue_type_url(self, project_key: str) -> str:
        return f"{self.client.base_url}/EditIssueType.action?projectKey={project_key}"

    # ------------------------------------------------------------ documents

    def _issue_document(self, issue: dict[str, Any]) -> RemoteDocument:
        return RemoteDocument(
            item_type="issue",
            item_id=int(issue["id"]),
            item_key=issue["issueKey"],
            name=issue.get("summary") or "",
            url=self.issue_url(issue["issueKey"]),
            content=issue.get("description") or "",
            updated_at=issue.get("updated"),
            attachment_names=[attachment["name"] for attachment in issue.get("attachments") or []],
        )

    def _comment_document(
        self, issue_key: str, issue_id: int | None, comment: dict[str, Any],
    ) -> RemoteDocument:
        return RemoteDocument(
            item_type="comment",
            item_id=int(comment["id"]),
            parent_id=issue_id,
            item_key=comment_key(issue_key, int(comment["id"])),
            url=self.comment_url(issue_key, int(comment["id"])),
            content=comment.get("content") or "",
            updated_at=comment.get("updated"),
        )

    def _wiki_document(self, wiki: dict[str, Any]) -> RemoteDocument:
        return RemoteDocument(
            item_type="wiki",
            item_id=int(wiki["id"]),
            item_key=wiki["name"],
            name=wiki["name"],
            url=self.wiki_url(int(wiki["id"])),
            content=wiki.get("content") or "",
            updated_at=wiki.get("updated"),
            attachment_names=[attachment["name"] for attachment in wiki.get("attachments") or []],
        )

    def _issue_type_document(self, project_key: str, issue_type: dict[str, Any]) -> RemoteDocument:
        return RemoteDocument(
            item_type="issue_type_description",
            item_id=int(issue_type["id"]),
            item_key=issue_type["name"],
            name=issue_type["name"],
            url=self.issue_type_url(project_key),
            content=issue_type.get("templateDescription") or "",
        )

    # ---------------------------------------------------------------- listing

    def get_project(self, project_key: str) -> ProjectInfo:
        project = self.client.get_project(project_key)
        self.project_key = project["projectKey"]
        return ProjectInfo(id=int(project["id"]), key=project["projectKey"], name=project.get("name") or "")

    def list_issues(self, project: ProjectInfo) -> list[RemoteDocument]:
        return [self._issue_document(issue) for issue in self.client.get_issues(project.id)]

    def list_comments(self, issue: RemoteDocument) -> list[RemoteDocument]:
        return [
            self._comment_document(issue.item_key, issue.item_id, comment)
            for comment in self.client.get_comments(issue.item_key)
            if comment.get("content")
        ]

    def list_wikis(self, project: ProjectInfo) -> list[RemoteDocument]:
        """List wiki pages with their full content.

        The list endpoint does not reliably include page content, so each page
        is fetched individually.
        """
        return [self._wiki_document(self.client.get_wiki(int(wiki["id"]))) for wiki in self.client.get_wikis(project.key)]

    def _issue_types(self, project_key: str) -> list[dict[str, Any]]:
        cached = self.issue_type_cache.get(project_key)
        if cached is None:
            cached = self.client.get_issue_types(project_key)
            self.issue_type_cache.put(project_key, cached)
        return cached

    def list_issue_types(self, project: ProjectInfo) -> list[RemoteDocument]:
        return [self._issue_type_document(project.key, issue_type) for issue_type in self._issue_types(project.key)]

    # ------------------------------------------------------- fetch and push

    def fetch_current(self, item: MigrateItem) -> RemoteDocument:
        """Fetch the current remote state of an item.

        Raises:
            ValueError: If the item's identity key is malformed
            ClientError: If the remote request fails

        """
        match item.item_type:
            case "issue":
                return self._issue_document(self.client.get_issue(item.item_key))
            case "comment":
                issue_key, comment_id = split_comment_key(item.item_key)
                comment = self.client.get_comment(issue_key, comment_id)
                return self._comment_document(issue_key, item.parent_id, comment)
            case "wiki":
                return self._wiki_document(self.client.get_wiki(item.item_id))
            case "issue_type_description":
                for issue_type in self._issue_types(self.project_key):
                    if int(issue_type["id"]) == item.item_id:
                        return self._issue_type_document(self.project_key, issue_type)
                msg = f"Issue type {item.item_id} not found in project {self.project_key}"
                raise ResourceNotFoundError(msg)
        msg = f"Unsupported item type: {item.item_type}"
        raise ValueError(msg)

    def push(self, item: MigrateItem, content: str) -> str | None:
        """Write new content to the remote item.

        Returns:
            The remote update timestamp when the API reports one

        Raises:
            ValueError: If the item's identity key is malformed
            ClientError: If the remote request fails

        """
        match item.item_type:
            case "issue":
                updated = self.client.update_issue_description(item.item_key, content)
            case "comment":
                issue_key, comment_id = split_comment_key(item.item_key)
                updated = self.client.update_comment(issue_key, comment_id, content)
            case "wiki":
                updated = self.client.update_wiki_content(item.item_id, content)
            case "issue_type_description":
                updated = self.client.update_issue_type_template(self.project_key, item.item_id, content)
                self.issue_type_cache.update(self.project_key, updated)
            case _:
                msg = f"Unsupported item type: {item.item_type}"
                raise ValueError(msg)
        logger.debug("Pushed %s %s", item.item_type, item.item_key)
        return updated.get("updated")
