"""
Immutable snapshots of a workflow document.

The pipeline never works on ORM rows directly. Snapshots are built either
from the database (saved document) or from the client payload (unsaved
edits in the constructor) and are safe to pass around after the DB session
is gone.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class ContentItemSnapshot:
    id: str
    name: str
    description: Optional[str] = None
    content: str = ""
    order: int = 0


@dataclass(frozen=True)
class StageSnapshot:
    id: str
    name: str
    order: int = 0
    description: Optional[str] = None
    with_review: bool = True
    include_multi_agent_chat: bool = False
    items: tuple[ContentItemSnapshot, ...] = ()


@dataclass(frozen=True)
class WorkflowDocument:
    id: str
    name: str
    description: Optional[str] = None
    complexity: Optional[str] = None
    include_multi_agent_chat: bool = False
    stages: tuple[StageSnapshot, ...] = ()

    def ordered_stages(self) -> list[StageSnapshot]:
        # Ties broken by stored position in the tuple
        return [s for _, s in sorted(enumerate(self.stages), key=lambda p: (p[1].order, p[0]))]


def ordered_items(stage: StageSnapshot) -> list[ContentItemSnapshot]:
    return [i for _, i in sorted(enumerate(stage.items), key=lambda p: (p[1].order, p[0]))]


def document_from_payload(payload: dict) -> WorkflowDocument:
    """
    Build a snapshot from a client-supplied workflow context.
    Accepts snake_case or the constructor's camelCase keys.
    """

    def pick(d: dict, *keys, default=None):
        for k in keys:
            if k in d and d[k] is not None:
                return d[k]
        return default

    stages = []
    for s_pos, s in enumerate(payload.get("stages") or []):
        items = []
        for i_pos, i in enumerate(pick(s, "items", "mini_prompts", "miniPrompts", default=[])):
            # Stage items may be wrapped ({miniPrompt: {...}}) by the constructor
            inner = pick(i, "mini_prompt", "miniPrompt", default=i)
            items.append(ContentItemSnapshot(
                id=str(pick(inner, "id", default="")),
                name=pick(inner, "name", default="Untitled"),
                description=pick(inner, "description"),
                content=pick(inner, "content", default=""),
                order=int(pick(i, "order", default=i_pos)),
            ))
        stages.append(StageSnapshot(
            id=str(pick(s, "id", default="")),
            name=pick(s, "name", default=f"Stage {s_pos + 1}"),
            order=int(pick(s, "order", default=s_pos)),
            description=pick(s, "description"),
            with_review=bool(pick(s, "with_review", "withReview", default=True)),
            include_multi_agent_chat=bool(
                pick(s, "include_multi_agent_chat", "includeMultiAgentChat", default=False)
            ),
            items=tuple(items),
        ))

    return WorkflowDocument(
        id=str(pick(payload, "id", default="new")),
        name=pick(payload, "name", default="Untitled Workflow"),
        description=pick(payload, "description"),
        complexity=pick(payload, "complexity"),
        include_multi_agent_chat=bool(
            pick(payload, "include_multi_agent_chat", "includeMultiAgentChat", default=False)
        ),
        stages=tuple(stages),
    )
